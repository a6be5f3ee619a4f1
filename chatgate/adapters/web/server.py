"""Operator HTTP API — health, session status, blacklist, moderation and leveling admin."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel

from chatgate.config import __version__


class StatusResponse(BaseModel):
    bot_name: str
    version: str
    session: Dict[str, Any]
    blacklist_size: int


class PairingResponse(BaseModel):
    token: str


class BlacklistResponse(BaseModel):
    users: List[str]


class AdminUserRequest(BaseModel):
    user_id: str
    admin_id: str = "operator"


class AdminUserResponse(BaseModel):
    success: bool
    user_id: str
    error: Optional[str] = None


class LevelEntry(BaseModel):
    uid: str
    level: int
    xp: int
    rank: str


class LevelsResponse(BaseModel):
    group_id: str
    auto_promotion: bool
    promotion: Dict[str, Any]
    leaderboard: List[LevelEntry]


class AutoPromotionRequest(BaseModel):
    enabled: bool


class MuteRequest(BaseModel):
    user_id: str
    minutes: Optional[int] = None


class MuteResponse(BaseModel):
    group_id: str
    user_id: str
    minutes: int
    count: int
    expires: float


class AntiLinkRequest(BaseModel):
    enabled: bool = True


class TempBanRequest(BaseModel):
    user_id: str
    reason: str = "rules violation"
    expires_in_minutes: Optional[int] = None


class TempBanResponse(BaseModel):
    user_id: str
    reason: str
    banned_at: float
    expires_at: Optional[float] = None


router = APIRouter()


def _runtime(request: Request):
    return request.app.state.runtime


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/status", response_model=StatusResponse)
async def status(request: Request):
    rt = _runtime(request)
    return StatusResponse(
        bot_name=rt.config.bot_name,
        version=__version__,
        session=rt.connection.status(),
        blacklist_size=len(rt.rate_limiter.get_blacklist()),
    )


@router.get("/pairing", response_model=PairingResponse)
async def pairing(request: Request):
    token = _runtime(request).connection.pairing_token
    if not token:
        raise HTTPException(status_code=404, detail="No pairing in progress")
    return PairingResponse(token=token)


@router.get("/admin/blacklist", response_model=BlacklistResponse)
async def blacklist(request: Request):
    return BlacklistResponse(users=_runtime(request).rate_limiter.get_blacklist())


@router.post("/admin/ban", response_model=AdminUserResponse)
async def ban(req: AdminUserRequest, request: Request):
    user_id = req.user_id.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    _runtime(request).rate_limiter.ban_user(user_id, req.admin_id)
    return AdminUserResponse(success=True, user_id=user_id)


@router.post("/admin/unban", response_model=AdminUserResponse)
async def unban(req: AdminUserRequest, request: Request):
    user_id = req.user_id.strip()
    if not _runtime(request).rate_limiter.unban_user(user_id, req.admin_id):
        raise HTTPException(status_code=404, detail=f"{user_id} is not blacklisted")
    return AdminUserResponse(success=True, user_id=user_id)



def _user_id(raw: str) -> str:
    user_id = raw.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    return user_id


@router.post("/groups/{group_id}/mute", response_model=MuteResponse)
async def mute(group_id: str, req: MuteRequest, request: Request):
    user_id = _user_id(req.user_id)
    if req.minutes is not None and req.minutes <= 0:
        raise HTTPException(status_code=400, detail="minutes must be positive")
    entry = _runtime(request).moderation.mute_user(group_id, user_id, req.minutes)
    return MuteResponse(
        group_id=group_id,
        user_id=user_id,
        minutes=entry.minutes,
        count=entry.count,
        expires=entry.expires,
    )


@router.post("/groups/{group_id}/unmute", response_model=AdminUserResponse)
async def unmute(group_id: str, req: AdminUserRequest, request: Request):
    user_id = _user_id(req.user_id)
    if not _runtime(request).moderation.unmute_user(group_id, user_id):
        raise HTTPException(status_code=404, detail=f"{user_id} is not muted in {group_id}")
    return AdminUserResponse(success=True, user_id=user_id)


@router.post("/groups/{group_id}/antilink")
async def antilink(group_id: str, req: AntiLinkRequest, request: Request):
    active = _runtime(request).moderation.toggle_anti_link(group_id, req.enabled)
    return {"group_id": group_id, "anti_link": active}


@router.post("/moderation/ban", response_model=TempBanResponse)
async def temp_ban(req: TempBanRequest, request: Request):
    user_id = _user_id(req.user_id)
    if req.expires_in_minutes is not None and req.expires_in_minutes <= 0:
        raise HTTPException(status_code=400, detail="expires_in_minutes must be positive")
    expires_in = req.expires_in_minutes * 60 if req.expires_in_minutes else None
    ban = _runtime(request).moderation.ban_user(user_id, req.reason, expires_in=expires_in)
    return TempBanResponse(
        user_id=user_id, reason=ban.reason, banned_at=ban.banned_at, expires_at=ban.expires_at
    )


@router.post("/moderation/unban", response_model=AdminUserResponse)
async def temp_unban(req: AdminUserRequest, request: Request):
    user_id = _user_id(req.user_id)
    if not _runtime(request).moderation.unban_user(user_id):
        raise HTTPException(status_code=404, detail=f"{user_id} has no moderation ban")
    return AdminUserResponse(success=True, user_id=user_id)

@router.get("/levels/{group_id}", response_model=LevelsResponse)
async def levels(group_id: str, request: Request, limit: int = 10):
    system = _runtime(request).levels
    board = [
        LevelEntry(uid=r.uid, level=r.level, xp=r.xp, rank=system.rank_title(r.level))
        for r in system.leaderboard(group_id, limit=max(1, min(limit, 100)))
    ]
    return LevelsResponse(
        group_id=group_id,
        auto_promotion=system.is_auto_promotion_enabled(group_id),
        promotion=system.get_status(group_id),
        leaderboard=board,
    )


@router.post("/levels/{group_id}/auto-promotion")
async def auto_promotion(group_id: str, req: AutoPromotionRequest, request: Request):
    _runtime(request).levels.set_auto_promotion(group_id, req.enabled)
    return {"group_id": group_id, "auto_promotion": req.enabled}


def create_app(runtime, lifespan=None) -> FastAPI:
    """Build the API around a running ChatGate instance (see chatgate.app)."""
    app = FastAPI(title="chatgate", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(router)
    return app
