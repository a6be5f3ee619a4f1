"""Domain data models — pure Python dataclasses."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

# Session states
DISCONNECTED = "disconnected"
CONNECTING = "connecting"
AWAITING_PAIRING = "awaiting_pairing"
CONNECTED = "connected"
CLOSED = "closed"

SESSION_STATES = (DISCONNECTED, CONNECTING, AWAITING_PAIRING, CONNECTED, CLOSED)

# Rate limiter denial reasons
BLACKLISTED = "BLACKLISTED"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


@dataclass
class Session:
    state: str = DISCONNECTED
    credentials: Optional[Dict[str, Any]] = None
    credentials_saved_at: Optional[float] = None
    pairing_token: Optional[str] = None
    reconnect_attempts: int = 0
    last_connected_at: Optional[float] = None
    identity: Optional[str] = None
    version: Optional[str] = None
    last_close_code: Optional[int] = None
    last_close_reason: str = ""
    terminal: bool = False  # fatal gateway code, no automatic reconnect


@dataclass
class RateWindow:
    count: int
    window_start: float


@dataclass
class RateCheck:
    """Outcome of RateLimiter.check — a control-flow result, never an error."""

    allowed: bool
    reason: Optional[str] = None
    wait_minutes: Optional[int] = None
    remaining: Optional[int] = None


@dataclass
class LevelRecord:
    gid: str
    uid: str
    level: int = 0
    xp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LevelRecord":
        if not isinstance(data, dict):
            raise TypeError(f"level record must be an object, got {type(data).__name__}")
        level = int(data.get("level") or 0)
        xp = int(data.get("xp") or 0)
        if level < 0 or xp < 0:
            raise ValueError(f"negative level/xp in {data!r}")
        return cls(gid=str(data["gid"]), uid=str(data["uid"]), level=level, xp=xp)


@dataclass
class AwardResult:
    record: LevelRecord
    leveled_up: bool


@dataclass
class RankedUser:
    uid: str
    name: str
    timestamp: float
    position: int


@dataclass
class PromotionWindow:
    window_start: float
    window_end: float
    max_level_users: List[RankedUser] = field(default_factory=list)
    promoted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def position_of(self, uid: str) -> Optional[int]:
        for idx, entry in enumerate(self.max_level_users):
            if entry.uid == uid:
                return idx + 1
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromotionWindow":
        if not isinstance(data, dict):
            raise TypeError(f"promotion window must be an object, got {type(data).__name__}")
        return cls(
            window_start=float(data["window_start"]),
            window_end=float(data["window_end"]),
            max_level_users=[
                RankedUser(
                    uid=str(u["uid"]),
                    name=str(u.get("name") or u["uid"]),
                    timestamp=float(u.get("timestamp") or 0),
                    position=int(u.get("position") or 0),
                )
                for u in data.get("max_level_users", [])
            ],
            promoted=[str(u) for u in data.get("promoted", [])],
            failed=[str(u) for u in data.get("failed", [])],
        )


@dataclass
class Registration:
    """Outcome of registering a max-level arrival in a promotion window."""

    success: bool
    message: str
    promoted: bool = False
    position: Optional[int] = None


@dataclass
class MuteEntry:
    expires: float
    muted_at: float
    minutes: int
    count: int


@dataclass
class TempBan:
    reason: str
    banned_at: float
    expires_at: Optional[float] = None  # None = permanent
