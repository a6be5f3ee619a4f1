"""chatgate — conversational gateway bot package."""

from chatgate.config import AppConfig, __version__
from chatgate.domain.connection import ConnectionManager
from chatgate.domain.dedup import DedupFilter
from chatgate.domain.leveling import LevelSystem
from chatgate.domain.moderation import ModerationPolicy
from chatgate.domain.pipeline import MessagePipeline
from chatgate.domain.rate_limiter import RateLimiter
from chatgate.adapters.gateway.bridge import BridgeGateway
from chatgate.adapters.responder.http_responder import HttpResponder, ResponderError
from chatgate.adapters.storage import CredentialStore, JsonStorage

__all__ = [
    "__version__",
    "AppConfig",
    "ConnectionManager",
    "DedupFilter",
    "LevelSystem",
    "ModerationPolicy",
    "MessagePipeline",
    "RateLimiter",
    "BridgeGateway",
    "HttpResponder",
    "ResponderError",
    "CredentialStore",
    "JsonStorage",
]
