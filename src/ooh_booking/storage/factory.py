"""Storage backend factory."""

from typing import Optional

from .base import StorageBackend
from .sqlite_backend import SQLiteBackend


def get_storage_backend(
    storage_type: Optional[str] = None,
    database_url: Optional[str] = None,
) -> StorageBackend:
    """Create and return the appropriate storage backend.

    Args:
        storage_type: Type of storage (only "sqlite" is supported)
        database_url: SQLite database URL

    Returns:
        StorageBackend instance

    Raises:
        ValueError: If invalid storage type
    """
    # Import settings for defaults
    from ..config.settings import get_settings
    settings = get_settings()

    storage_type = (storage_type or settings.storage_type or "sqlite").lower()
    database_url = database_url or settings.database_url

    if storage_type == "sqlite":
        if not database_url:
            database_url = "sqlite:///./ooh_booking.db"
        return SQLiteBackend(database_url=database_url)

    raise ValueError(
        f"Unknown storage type: {storage_type}. "
        "Supported types: sqlite"
    )


# Global storage instance (lazy initialization)
_storage_instance: Optional[StorageBackend] = None


async def get_storage() -> StorageBackend:
    """Get the global storage instance, creating it if needed.

    This is a convenience function for getting a connected storage backend.
    """
    global _storage_instance

    if _storage_instance is None:
        _storage_instance = get_storage_backend()
        await _storage_instance.connect()

    return _storage_instance


async def close_storage() -> None:
    """Close the global storage instance."""
    global _storage_instance

    if _storage_instance is not None:
        await _storage_instance.disconnect()
        _storage_instance = None
