from chatgate.adapters.responder.http_responder import HttpResponder, ResponderError

__all__ = ["HttpResponder", "ResponderError"]
