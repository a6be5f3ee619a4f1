"""Port interfaces (Hexagonal Architecture)."""

from chatgate.ports.inbound import GatewayEvents, MessageEnvelope
from chatgate.ports.outbound import (
    ActionResult,
    CredentialPort,
    GatewayPort,
    GatewayTransport,
    ResponderPort,
    ResponderReply,
    ResponderRequest,
    StoragePort,
)

__all__ = [
    "GatewayEvents",
    "MessageEnvelope",
    "ActionResult",
    "CredentialPort",
    "GatewayPort",
    "GatewayTransport",
    "ResponderPort",
    "ResponderReply",
    "ResponderRequest",
    "StoragePort",
]
