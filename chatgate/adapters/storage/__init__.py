from chatgate.adapters.storage.credentials import CredentialStore
from chatgate.adapters.storage.json_store import JsonStorage

__all__ = ["CredentialStore", "JsonStorage"]
