"""Content OS storage layer."""

from contentos.storage.base import StorageBackend
from contentos.storage.sqlite_store import SQLiteStore

__all__ = ["SQLiteStore", "StorageBackend"]
