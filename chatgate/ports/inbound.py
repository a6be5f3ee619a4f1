"""Inbound port — platform-agnostic message envelope and gateway events."""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable

CONTENT_KINDS = ("text", "audio", "image", "other")


@dataclass(frozen=True)
class MessageEnvelope:
    """One inbound unit of platform content with sender/conversation metadata."""

    id: str
    conversation_id: str
    sender_id: str
    timestamp_ms: int
    content_kind: str = "text"  # text | audio | image | other
    text: str = ""
    participant_id: Optional[str] = None  # group conversations only
    payload_ref: Optional[str] = None  # media handle resolved by the gateway
    push_name: str = ""
    from_me: bool = False
    quoted_text: str = ""
    quoted_sender_id: str = ""
    reply_to_bot: bool = False

    @property
    def is_group(self) -> bool:
        return self.conversation_id.endswith("@g.us") or bool(self.participant_id)

    @property
    def author_id(self) -> str:
        """Who actually wrote the message: the participant in groups, else the sender."""
        return self.participant_id or self.sender_id

    @property
    def display_name(self) -> str:
        return self.push_name or self.author_id.split("@")[0]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageEnvelope":
        kind = str(data.get("content_kind") or "text")
        if kind not in CONTENT_KINDS:
            kind = "other"
        return cls(
            id=str(data["id"]),
            conversation_id=str(data["conversation_id"]),
            sender_id=str(data["sender_id"]),
            timestamp_ms=int(data.get("timestamp_ms") or 0),
            content_kind=kind,
            text=str(data.get("text") or ""),
            participant_id=data.get("participant_id") or None,
            payload_ref=data.get("payload_ref") or None,
            push_name=str(data.get("push_name") or ""),
            from_me=bool(data.get("from_me", False)),
            quoted_text=str(data.get("quoted_text") or ""),
            quoted_sender_id=str(data.get("quoted_sender_id") or ""),
            reply_to_bot=bool(data.get("reply_to_bot", False)),
        )


@runtime_checkable
class GatewayEvents(Protocol):
    """Callbacks a gateway transport delivers to the core."""

    async def on_pairing(self, token: str) -> None: ...
    async def on_open(self, identity: str, version: str) -> None: ...
    async def on_close(self, code: Optional[int], reason: str) -> None: ...
    async def on_credentials(self, credentials: Dict[str, Any]) -> None: ...
    async def on_message(self, envelope: MessageEnvelope) -> None: ...
