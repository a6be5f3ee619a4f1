"""Domain layer — pure Python, no framework dependencies."""

from chatgate.domain.models import LevelRecord, PromotionWindow, RateCheck, Registration, Session
from chatgate.domain.locks import KeyedLock
from chatgate.domain.dedup import DedupFilter
from chatgate.domain.rate_limiter import RateLimiter
from chatgate.domain.leveling import LevelSystem
from chatgate.domain.moderation import ModerationPolicy
from chatgate.domain.connection import ConnectionManager, reconnect_delay_ms
from chatgate.domain.pipeline import MessagePipeline

__all__ = [
    "LevelRecord",
    "PromotionWindow",
    "RateCheck",
    "Registration",
    "Session",
    "KeyedLock",
    "DedupFilter",
    "RateLimiter",
    "LevelSystem",
    "ModerationPolicy",
    "ConnectionManager",
    "reconnect_delay_ms",
    "MessagePipeline",
]
