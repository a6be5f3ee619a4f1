"""Group leveling — XP ledger, level-ups and the auto-promotion window."""

import math
import sys
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from chatgate.config import LevelingConfig
from chatgate.domain.models import (
    AwardResult,
    LevelRecord,
    PromotionWindow,
    RankedUser,
    Registration,
)
from chatgate.ports.outbound import GatewayPort, StoragePort

LEVELS_KEY = "group_levels"
PROMOTIONS_KEY = "level_promotions"
SETTINGS_KEY = "level_settings"

_DAY_SECONDS = 24 * 60 * 60

RANK_TITLES = (
    "Recruit",
    "Private",
    "Corporal",
    "Sergeant",
    "Lieutenant",
    "Captain",
    "Major",
    "Colonel",
    "General",
    "Marshal",
    "Supreme Commander",
    "Elite Leader",
    "Shadow Master",
    "Warden of the Order",
    "Warlord",
    "Emperor",
)


def _log(msg: str):
    print(msg, file=sys.stderr)


class LevelSystem:
    """Per-(group, user) XP ledger plus a per-group promotion window.

    Every mutation is flushed to storage as a full-document rewrite. Callers
    running concurrently must serialize per (group, user) for ``award_xp``
    and per group for ``register_max_level_user``.
    """

    def __init__(
        self,
        storage: StoragePort,
        config: Optional[LevelingConfig] = None,
        gateway: Optional[GatewayPort] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self._config = config or LevelingConfig()
        self._gateway = gateway
        self._clock = clock
        self._records: Dict[Tuple[str, str], LevelRecord] = {}
        self._promos: Dict[str, PromotionWindow] = {}
        self._settings: Dict[str, Dict[str, Any]] = {}
        self._load()

    @property
    def max_level(self) -> int:
        return self._config.max_level

    def attach_gateway(self, gateway: GatewayPort):
        self._gateway = gateway

    # -- Persistence --

    def _load(self):
        for raw in self._storage.load(LEVELS_KEY, []):
            try:
                rec = LevelRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                _log(f"[leveling] skipping bad level record: {e}")
                continue
            rec.level = min(rec.level, self.max_level)
            if rec.level >= self.max_level:
                rec.xp = 0
            self._records[(rec.gid, rec.uid)] = rec

        for gid, raw in self._storage.load(PROMOTIONS_KEY, {}).items():
            try:
                self._promos[gid] = PromotionWindow.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                _log(f"[leveling] skipping bad promotion window for {gid}: {e}")

        settings = self._storage.load(SETTINGS_KEY, {})
        self._settings = {gid: s for gid, s in settings.items() if isinstance(s, dict)}

    def _save_records(self):
        try:
            self._storage.save(LEVELS_KEY, [r.to_dict() for r in self._records.values()])
        except Exception as e:
            _log(f"[leveling] failed to save level records: {e}")

    def _save_promos(self):
        try:
            self._storage.save(PROMOTIONS_KEY, {gid: w.to_dict() for gid, w in self._promos.items()})
        except Exception as e:
            _log(f"[leveling] failed to save promotion windows: {e}")

    # -- XP --

    def required_xp(self, level: int) -> float:
        """XP needed to leave ``level``; each level doubles the previous one."""
        if level >= self.max_level:
            return math.inf
        return math.floor(self._config.base_xp * (self._config.growth_factor ** level))

    def get_record(self, gid: str, uid: str) -> LevelRecord:
        rec = self._records.get((gid, uid))
        if rec is None:
            return LevelRecord(gid=gid, uid=uid)
        return LevelRecord(gid=rec.gid, uid=rec.uid, level=rec.level, xp=rec.xp)

    def award_xp(self, gid: str, uid: str, amount: int = 10) -> AwardResult:
        if amount < 0:
            raise ValueError("XP amount must be non-negative")
        rec = self._records.get((gid, uid))
        if rec is None:
            rec = self._records[(gid, uid)] = LevelRecord(gid=gid, uid=uid)

        rec.xp += amount
        leveled = False
        # A single large grant may cross several levels; the remainder carries over.
        while rec.level < self.max_level:
            required = self.required_xp(rec.level)
            if rec.xp < required:
                break
            rec.xp -= int(required)
            rec.level += 1
            leveled = True

        if rec.level >= self.max_level:
            rec.level = self.max_level
            rec.xp = 0

        self._save_records()
        return AwardResult(record=self.get_record(gid, uid), leveled_up=leveled)

    def leaderboard(self, gid: str, limit: int = 10) -> List[LevelRecord]:
        group = [r for r in self._records.values() if r.gid == gid]
        group.sort(key=lambda r: (r.level, r.xp), reverse=True)
        return group[:limit]

    @staticmethod
    def rank_title(level: int) -> str:
        if 0 <= level < len(RANK_TITLES):
            return RANK_TITLES[level]
        return f"Level {level}"

    # -- Auto-promotion --

    def is_auto_promotion_enabled(self, gid: str) -> bool:
        return self._settings.get(gid, {}).get("auto_promotion") is True

    def set_auto_promotion(self, gid: str, enabled: bool):
        self._settings.setdefault(gid, {})["auto_promotion"] = bool(enabled)
        try:
            self._storage.save(SETTINGS_KEY, self._settings)
        except Exception as e:
            _log(f"[leveling] failed to save settings: {e}")

    def _current_window(self, gid: str, now: float) -> PromotionWindow:
        window = self._promos.get(gid)
        if window is None or now > window.window_end:
            if window is not None:
                _log(f"[leveling] promotion window for {gid} expired, starting a new one")
            window = PromotionWindow(
                window_start=now,
                window_end=now + self._config.window_days * _DAY_SECONDS,
            )
            self._promos[gid] = window
        return window

    async def register_max_level_user(self, gid: str, uid: str, name: str) -> Registration:
        """Rank a user who just reached the max level; promote the first ``top_k``."""
        now = self._clock()
        window = self._current_window(gid, now)
        top_k = self._config.top_k

        if uid in window.failed:
            return Registration(success=False, message="Promotion already failed in this window.")
        if uid in window.promoted:
            return Registration(
                success=False,
                message="Already promoted in this window.",
                position=window.position_of(uid),
            )

        position = window.position_of(uid)
        already_registered = position is not None
        if not already_registered:
            position = len(window.max_level_users) + 1
            window.max_level_users.append(
                RankedUser(uid=uid, name=name or uid, timestamp=now, position=position)
            )
        self._save_promos()

        if self.is_auto_promotion_enabled(gid) and position <= top_k:
            window.promoted.append(uid)
            self._save_promos()
            if not await self._promote(gid, uid, name, position):
                window.promoted.remove(uid)
                window.failed.append(uid)
                self._save_promos()
                return Registration(success=False, message="Promotion to admin failed.", position=position)
            return Registration(
                success=True,
                promoted=True,
                position=position,
                message=f"Promoted to admin (top {position}/{top_k}).",
            )

        if already_registered:
            message = f"Already registered at position {position}, not promoted."
        else:
            message = f"Max level registered ({len(window.max_level_users)}/{top_k})."
        return Registration(success=True, promoted=False, position=position, message=message)

    async def _promote(self, gid: str, uid: str, name: str, position: int) -> bool:
        if self._gateway is None:
            _log(f"[leveling] no gateway attached, promotion of {uid} in {gid} is state-only")
            return True
        result = await self._gateway.promote_participant(gid, uid)
        if not result.success:
            _log(f"[leveling] promote {uid} in {gid} failed: {result.error}")
            return False
        description = (
            f"Auto-admin: {name or uid} "
            f"(level {self.max_level} - top {position}/{self._config.top_k})"
        )
        desc_result = await self._gateway.update_group_description(gid, description)
        if not desc_result.success:
            _log(f"[leveling] group description update failed for {gid}: {desc_result.error}")
        return True

    def get_status(self, gid: str) -> Dict[str, Any]:
        window = self._promos.get(gid)
        if window is None:
            return {"active": False}
        now = self._clock()
        days_remaining = max(0, math.ceil((window.window_end - now) / _DAY_SECONDS))
        return {
            "active": now <= window.window_end,
            "days_remaining": days_remaining,
            "max_level_users": [
                {"uid": u.uid, "name": u.name, "position": u.position}
                for u in window.max_level_users
            ],
            "promoted": list(window.promoted),
            "failed": list(window.failed),
        }
