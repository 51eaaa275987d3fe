"""Storage backends for the OOH booking engines.

SQLite is the supported relational store.
"""

from .base import StorageBackend
from .factory import close_storage, get_storage, get_storage_backend
from .sqlite_backend import SQLiteBackend

__all__ = [
    "SQLiteBackend",
    "StorageBackend",
    "close_storage",
    "get_storage",
    "get_storage_backend",
]
