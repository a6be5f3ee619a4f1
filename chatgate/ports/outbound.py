"""Outbound ports — interfaces for external system adapters."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from chatgate.ports.inbound import GatewayEvents


@dataclass
class ActionResult:
    """Unified result type for fallible gateway operations."""

    success: bool
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResponderRequest:
    """Normalized request handed to the downstream responder."""

    sender_name: str
    sender_id: str
    conversation_type: str  # "private" | "group"
    text: str
    message_kind: str = "text"
    group_id: Optional[str] = None
    quoted_text: str = ""
    quoted_sender_id: str = ""
    reply_to_bot: bool = False
    payload_ref: Optional[str] = None


@dataclass
class ResponderReply:
    text: str = ""
    audio: Optional[bytes] = None


@runtime_checkable
class GatewayTransport(Protocol):
    """Owns the live session to the messaging platform."""

    async def open(self, credentials: Optional[Dict[str, Any]], events: GatewayEvents) -> None: ...
    async def close(self) -> None: ...


@runtime_checkable
class GatewayPort(Protocol):
    """Imperative platform operations the core invokes."""

    async def send_text(self, conversation_id: str, text: str, mentions: Optional[list] = None) -> ActionResult: ...
    async def send_audio(self, conversation_id: str, audio: bytes) -> ActionResult: ...
    async def remove_participant(self, group_id: str, user_id: str) -> ActionResult: ...
    async def promote_participant(self, group_id: str, user_id: str) -> ActionResult: ...
    async def update_group_description(self, group_id: str, description: str) -> ActionResult: ...
    async def fetch_profile(self, user_id: str) -> ActionResult: ...


@runtime_checkable
class ResponderPort(Protocol):
    """Interface for the downstream reply generator."""

    async def respond(self, request: ResponderRequest) -> ResponderReply: ...


@runtime_checkable
class StoragePort(Protocol):
    """Interface for persistent document storage."""

    def load(self, key: str, default: Any = None) -> Any: ...
    def save(self, key: str, data: Any) -> None: ...
    def append_line(self, name: str, line: str) -> None: ...


# Credential inspection outcomes
CREDENTIALS_OK = "ok"
CREDENTIALS_MISSING = "missing"
CREDENTIALS_STALE = "stale"
CREDENTIALS_INVALID = "invalid"


@runtime_checkable
class CredentialPort(Protocol):
    """Interface for the gateway's persisted credential blob."""

    def inspect(self) -> Tuple[str, Optional[Dict[str, Any]]]: ...
    def saved_at(self) -> Optional[float]: ...
    def save(self, creds: Dict[str, Any]) -> None: ...
    def wipe(self) -> None: ...
