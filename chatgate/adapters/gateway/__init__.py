from chatgate.adapters.gateway.bridge import BridgeGateway

__all__ = ["BridgeGateway"]
