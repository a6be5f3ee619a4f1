"""Hourly rate limiting, violation tracking and persisted blacklist."""

import asyncio
import math
import sys
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from chatgate.config import RateLimitConfig
from chatgate.domain.models import BLACKLISTED, RATE_LIMIT_EXCEEDED, RateCheck, RateWindow
from chatgate.ports.outbound import StoragePort

BLACKLIST_KEY = "blacklist"
AUDIT_LOG = "security_log.txt"

_ICONS = {"BAN": "🚫", "WARN": "⚠️"}


def _log(msg: str):
    print(msg, file=sys.stderr)


class RateLimiter:
    """Per-user sliding hourly window with auto-blacklist on repeat offenders.

    The owner is never counted. A user breaching the hourly limit
    ``max_violations`` times is blacklisted until an explicit unban.
    """

    def __init__(
        self,
        storage: StoragePort,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._usage: Dict[str, RateWindow] = {}
        self._violations: Dict[str, int] = {}
        self._blacklist = set(self._load_blacklist())
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def hourly_limit(self) -> int:
        return self._config.hourly_limit

    def _load_blacklist(self) -> List[str]:
        data = self._storage.load(BLACKLIST_KEY, [])
        return [str(uid) for uid in data if isinstance(uid, (str, int))]

    def _save_blacklist(self):
        try:
            self._storage.save(BLACKLIST_KEY, sorted(self._blacklist))
        except Exception as e:
            _log(f"[rate_limiter] failed to save blacklist: {e}")

    def _audit(self, action: str, user_id: str, details: str):
        timestamp = datetime.now(timezone.utc).isoformat()
        icon = _ICONS.get(action, "ℹ️")
        line = f"[{timestamp}] {icon} {action} | User: {user_id} | {details}"
        _log(line)
        try:
            self._storage.append_line(AUDIT_LOG, line)
        except Exception as e:
            _log(f"[rate_limiter] failed to write audit log: {e}")

    def is_blacklisted(self, user_id: str) -> bool:
        return user_id in self._blacklist

    def violations(self, user_id: str) -> int:
        return self._violations.get(user_id, 0)

    def get_blacklist(self) -> List[str]:
        return sorted(self._blacklist)

    def check(self, user_id: str, is_owner: bool = False) -> RateCheck:
        if is_owner:
            return RateCheck(allowed=True)
        if user_id in self._blacklist:
            return RateCheck(allowed=False, reason=BLACKLISTED)

        now = self._clock()
        window = self._config.hourly_window_seconds
        usage = self._usage.get(user_id)
        if usage is None:
            usage = self._usage[user_id] = RateWindow(count=0, window_start=now)

        if now - usage.window_start > window:
            usage.count = 0
            usage.window_start = now

        usage.count += 1

        if usage.count > self._config.hourly_limit:
            self._handle_violation(user_id)
            remaining_seconds = window - (now - usage.window_start)
            return RateCheck(
                allowed=False,
                reason=RATE_LIMIT_EXCEEDED,
                wait_minutes=max(1, math.ceil(remaining_seconds / 60)),
            )

        return RateCheck(allowed=True, remaining=self._config.hourly_limit - usage.count)

    def _handle_violation(self, user_id: str):
        count = self._violations.get(user_id, 0) + 1
        self._violations[user_id] = count
        self._audit("WARN", user_id, f"rate limit violation ({count}/{self._config.max_violations})")

        if count >= self._config.max_violations and user_id not in self._blacklist:
            self._blacklist.add(user_id)
            self._save_blacklist()
            self._audit("BAN", user_id, "blacklisted after repeated violations")

    def sweep(self) -> int:
        """Evict windows that have expired. Returns the number evicted."""
        now = self._clock()
        window = self._config.hourly_window_seconds
        expired = [uid for uid, usage in self._usage.items() if now - usage.window_start > window]
        for uid in expired:
            del self._usage[uid]
        return len(expired)

    def ban_user(self, user_id: str, admin_id: str) -> bool:
        self._blacklist.add(user_id)
        self._save_blacklist()
        self._audit("BAN", user_id, f"banned manually by admin {admin_id}")
        return True

    def unban_user(self, user_id: str, admin_id: str) -> bool:
        if user_id not in self._blacklist:
            return False
        self._blacklist.discard(user_id)
        self._save_blacklist()
        self._violations.pop(user_id, None)
        self._usage.pop(user_id, None)
        self._audit("UNBAN", user_id, f"unbanned manually by admin {admin_id}")
        return True

    # -- Background sweep --

    def start(self):
        if not self._sweep_task or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self._config.sweep_interval_seconds)
            try:
                evicted = self.sweep()
                if evicted:
                    _log(f"[rate_limiter] swept {evicted} expired windows")
            except Exception as e:
                _log(f"[rate_limiter] sweep error: {e}")
