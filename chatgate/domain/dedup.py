"""Deduplication and staleness filter for inbound envelopes.

Pure domain logic, no framework dependencies.
"""

import time
from typing import Callable, Dict, Optional

from chatgate.ports.inbound import MessageEnvelope

DUPLICATE = "DUPLICATE"
OWN_MESSAGE = "OWN_MESSAGE"
EMPTY = "EMPTY"
STALE = "STALE"


class DedupFilter:
    """Admits each message id at most once within the dedup horizon."""

    def __init__(
        self,
        window_seconds: float = 30.0,
        grace_period_seconds: float = 10.0,
        bot_id: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self._window = window_seconds
        self._grace = grace_period_seconds
        self._bot_id = bot_id
        self._clock = clock
        self._seen: Dict[str, float] = {}  # message id -> expiry
        self.last_connected_at: Optional[float] = None

    def set_bot_id(self, bot_id: str):
        self._bot_id = bot_id or ""

    def mark_connected(self, at: float):
        """Record the session start; older envelopes are backlog replay."""
        self.last_connected_at = at

    def rejection_reason(self, envelope: MessageEnvelope) -> Optional[str]:
        now = self._clock()
        expiry = self._seen.get(envelope.id)
        if expiry is not None:
            if expiry > now:
                return DUPLICATE
            del self._seen[envelope.id]

        if envelope.from_me or (self._bot_id and _same_user(envelope.author_id, self._bot_id)):
            return OWN_MESSAGE

        if envelope.content_kind == "text":
            if not envelope.text.strip():
                return EMPTY
        elif not envelope.payload_ref and not envelope.text.strip():
            return EMPTY

        if self.last_connected_at is not None and envelope.timestamp_ms:
            cutoff_ms = (self.last_connected_at - self._grace) * 1000
            if envelope.timestamp_ms < cutoff_ms:
                return STALE
        return None

    def admit(self, envelope: MessageEnvelope) -> bool:
        if self.rejection_reason(envelope) is not None:
            return False
        self._seen[envelope.id] = self._clock() + self._window
        return True

    def purge(self) -> int:
        """Drop expired ids. Returns how many were removed."""
        now = self._clock()
        expired = [mid for mid, expiry in self._seen.items() if expiry <= now]
        for mid in expired:
            del self._seen[mid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._seen)


def _same_user(a: str, b: str) -> bool:
    return a.split("@")[0].split(":")[0] == b.split("@")[0].split(":")[0]
