"""Moderation decisions — bans, mutes, anti-link and burst spam.

Nothing here talks to the gateway; the pipeline acts on positive matches.
"""

import re
import sys
import time
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from chatgate.config import ModerationConfig
from chatgate.domain.models import MuteEntry, TempBan
from chatgate.ports.outbound import StoragePort

ANTILINK_KEY = "antilink"

_LINK_RE = re.compile(
    r"(https?://\S+)"
    r"|(www\.\S+)"
    r"|(bit\.ly/\S+)"
    r"|(t\.me/\S+)"
    r"|(wa\.me/\S+)"
    r"|(chat\.whatsapp\.com/\S+)"
    r"|(\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b)",
    re.IGNORECASE,
)


def _log(msg: str):
    print(msg, file=sys.stderr)


def contains_link(text: str) -> bool:
    return bool(text) and _LINK_RE.search(text) is not None


class ModerationPolicy:
    """Pure decision functions plus the small amount of state they need."""

    def __init__(
        self,
        storage: StoragePort,
        config: Optional[ModerationConfig] = None,
        blacklist_check: Optional[Callable[[str], bool]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self._config = config or ModerationConfig()
        self._blacklist_check = blacklist_check
        self._clock = clock
        self._muted: Dict[Tuple[str, str], MuteEntry] = {}
        self._mute_counts: Dict[Tuple[str, str], Tuple[int, str]] = {}  # -> (count, day)
        self._bans: Dict[str, TempBan] = {}
        self._spam: "OrderedDict[str, List[float]]" = OrderedDict()
        self._anti_link = set(
            str(gid) for gid in self._storage.load(ANTILINK_KEY, []) if isinstance(gid, str)
        )

    # -- Bans --

    def is_banned(self, user_id: str) -> bool:
        if self._blacklist_check and self._blacklist_check(user_id):
            return True
        ban = self._bans.get(user_id)
        if ban is None:
            return False
        if ban.expires_at is not None and self._clock() > ban.expires_at:
            del self._bans[user_id]
            return False
        return True

    def ban_user(self, user_id: str, reason: str = "rules violation", expires_in: Optional[float] = None) -> TempBan:
        now = self._clock()
        ban = TempBan(
            reason=reason,
            banned_at=now,
            expires_at=now + expires_in if expires_in else None,
        )
        self._bans[user_id] = ban
        return ban

    def unban_user(self, user_id: str) -> bool:
        return self._bans.pop(user_id, None) is not None

    # -- Mutes --

    def is_user_muted(self, group_id: str, user_id: str) -> bool:
        if not group_id or not user_id:
            return False
        key = (group_id, user_id)
        entry = self._muted.get(key)
        if entry is None:
            return False
        if self._clock() > entry.expires:
            del self._muted[key]
            _log(f"[moderation] mute expired for {user_id} in {group_id}")
            return False
        return True

    def mute_user(self, group_id: str, user_id: str, minutes: Optional[int] = None) -> MuteEntry:
        """Mute for ``minutes``, doubling for every repeat mute on the same day."""
        base = minutes if minutes is not None else self._config.mute_default_minutes
        now = self._clock()
        key = (group_id, user_id)
        today = datetime.fromtimestamp(now).date().isoformat()
        count, day = self._mute_counts.get(key, (0, today))
        if day != today:
            count = 0
        count += 1
        self._mute_counts[key] = (count, today)

        effective = base * (2 ** (count - 1))
        if count > 1:
            _log(f"[moderation] {user_id} muted {count}x today, {effective} min")
        entry = MuteEntry(expires=now + effective * 60, muted_at=now, minutes=effective, count=count)
        self._muted[key] = entry
        return entry

    def unmute_user(self, group_id: str, user_id: str) -> bool:
        return self._muted.pop((group_id, user_id), None) is not None

    # -- Anti-link --

    def is_anti_link_active(self, group_id: str) -> bool:
        return group_id in self._anti_link

    def toggle_anti_link(self, group_id: str, enable: bool = True) -> bool:
        if enable:
            self._anti_link.add(group_id)
        else:
            self._anti_link.discard(group_id)
        try:
            self._storage.save(ANTILINK_KEY, sorted(self._anti_link))
        except Exception as e:
            _log(f"[moderation] failed to save anti-link settings: {e}")
        return enable

    @staticmethod
    def contains_link(text: str) -> bool:
        return contains_link(text)

    # -- Burst spam --

    def check_spam(self, user_id: str) -> bool:
        """True when the user already sent ``spam_threshold`` messages inside the burst window."""
        now = self._clock()
        window = self._config.spam_window_seconds
        recent = [t for t in self._spam.get(user_id, []) if now - t < window]
        if len(recent) >= self._config.spam_threshold:
            self._spam[user_id] = recent
            return True
        recent.append(now)
        self._spam[user_id] = recent
        self._spam.move_to_end(user_id)
        while len(self._spam) > self._config.spam_cache_size:
            self._spam.popitem(last=False)
        return False

    def clear_spam_cache(self):
        self._spam.clear()
