"""ORM models shared across the storage services."""

from .storage_file import StorageFileModel

__all__ = ["StorageFileModel"]
