"""Configuration — typed sections built once from the environment."""

__version__ = "0.1.0"

import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv

load_dotenv()

_stderr_print = lambda *a, **kw: print(*a, **kw, file=sys.stderr)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        _stderr_print(f"Invalid {name}={raw!r}, falling back to {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        _stderr_print(f"Invalid {name}={raw!r}, falling back to {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    return [part.strip() for part in os.getenv(name, "").split(",") if part.strip()]


def normalize_number(user_id: str) -> str:
    """Strip the device suffix (``123:4@host`` -> ``123``) and any non-digit."""
    base = str(user_id).split("@")[0].split(":")[0]
    return re.sub(r"\D", "", base)


@dataclass
class ConnectionConfig:
    reconnect_base_ms: int = 5000
    reconnect_cap_ms: int = 30000
    pairing_timeout_seconds: float = 10.0
    credentials_max_age_hours: float = 24.0
    # 401 / logged out
    auth_failure_codes: Tuple[int, ...] = (401,)
    # 403 account banned or suspended
    fatal_codes: Tuple[int, ...] = (403,)


@dataclass
class DedupConfig:
    window_seconds: float = 30.0
    grace_period_seconds: float = 10.0
    purge_interval_seconds: float = 60.0


@dataclass
class RateLimitConfig:
    hourly_limit: int = 100
    hourly_window_seconds: float = 3600.0
    max_violations: int = 3
    sweep_interval_seconds: float = 600.0


@dataclass
class LevelingConfig:
    enabled: bool = True
    base_xp: int = 100
    growth_factor: int = 2
    max_level: int = 60
    top_k: int = 3
    window_days: float = 3.0
    xp_min: int = 15
    xp_max: int = 25


@dataclass
class ModerationConfig:
    spam_threshold: int = 3
    spam_window_seconds: float = 3.0
    spam_cache_size: int = 1000
    mute_default_minutes: int = 5


@dataclass
class BridgeConfig:
    url: str = "http://localhost:8080"
    token: str = ""
    timeout_seconds: float = 30.0


@dataclass
class ResponderConfig:
    url: str = ""
    timeout_seconds: float = 120.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0


@dataclass
class AppConfig:
    """Typed configuration, constructed once at startup and passed down."""

    port: int = 3000
    bot_name: str = "chatgate"
    bot_number: str = ""
    owner_numbers: List[str] = field(default_factory=list)
    data_dir: str = "data"
    auth_dir: str = "auth"
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    leveling: LevelingConfig = field(default_factory=LevelingConfig)
    moderation: ModerationConfig = field(default_factory=ModerationConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    responder: ResponderConfig = field(default_factory=ResponderConfig)

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    def is_owner(self, user_id: str) -> bool:
        number = normalize_number(user_id)
        if not number:
            return False
        return any(normalize_number(owner) == number for owner in self.owner_numbers)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create AppConfig from environment variables."""
        return cls(
            port=_env_int("PORT", 3000),
            bot_name=os.getenv("BOT_NAME", "chatgate"),
            bot_number=os.getenv("BOT_NUMBER", ""),
            owner_numbers=_env_list("OWNER_NUMBERS"),
            data_dir=os.getenv("DATA_DIR", "data"),
            auth_dir=os.getenv("AUTH_DIR", "auth"),
            connection=ConnectionConfig(
                reconnect_base_ms=_env_int("RECONNECT_BASE_MS", 5000),
                reconnect_cap_ms=_env_int("RECONNECT_CAP_MS", 30000),
                pairing_timeout_seconds=_env_float("PAIRING_TIMEOUT_SECONDS", 10.0),
                credentials_max_age_hours=_env_float("CREDENTIALS_MAX_AGE_HOURS", 24.0),
            ),
            dedup=DedupConfig(
                window_seconds=_env_int("MESSAGE_DEDUP_TIME_MS", 30000) / 1000,
                grace_period_seconds=_env_float("STALE_GRACE_SECONDS", 10.0),
                purge_interval_seconds=_env_float("DEDUP_PURGE_INTERVAL_SECONDS", 60.0),
            ),
            rate_limit=RateLimitConfig(
                hourly_limit=_env_int("HOURLY_LIMIT", 100),
                hourly_window_seconds=_env_float("HOURLY_WINDOW_SECONDS", 3600.0),
                max_violations=_env_int("MAX_VIOLATIONS", 3),
                sweep_interval_seconds=_env_float("RATE_SWEEP_INTERVAL_SECONDS", 600.0),
            ),
            leveling=LevelingConfig(
                enabled=_env_bool("FEATURE_LEVELING", True),
                base_xp=_env_int("LEVEL_BASE_XP", 100),
                growth_factor=_env_int("LEVEL_GROWTH_FACTOR", 2),
                max_level=_env_int("LEVEL_MAX", 60),
                top_k=_env_int("LEVEL_TOP_FOR_ADMIN", 3),
                window_days=_env_float("LEVEL_WINDOW_DAYS", 3.0),
                xp_min=_env_int("LEVEL_XP_MIN", 15),
                xp_max=_env_int("LEVEL_XP_MAX", 25),
            ),
            moderation=ModerationConfig(
                spam_threshold=_env_int("SPAM_THRESHOLD", 3),
                spam_window_seconds=_env_float("SPAM_WINDOW_SECONDS", 3.0),
                spam_cache_size=_env_int("SPAM_CACHE_SIZE", 1000),
                mute_default_minutes=_env_int("MUTE_DEFAULT_MINUTES", 5),
            ),
            bridge=BridgeConfig(
                url=os.getenv("BRIDGE_URL", "http://localhost:8080").rstrip("/"),
                token=os.getenv("BRIDGE_TOKEN", ""),
                timeout_seconds=_env_float("BRIDGE_TIMEOUT_SECONDS", 30.0),
            ),
            responder=ResponderConfig(
                url=os.getenv("RESPONDER_URL", "").rstrip("/"),
                timeout_seconds=_env_float("RESPONDER_TIMEOUT_SECONDS", 120.0),
                retry_attempts=_env_int("RESPONDER_RETRY_ATTEMPTS", 3),
                retry_delay_seconds=_env_float("RESPONDER_RETRY_DELAY_SECONDS", 1.0),
            ),
        )
