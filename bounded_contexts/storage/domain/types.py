"""Storage governance domain enums."""

from __future__ import annotations

from enum import Enum

__all__ = [
    "ProviderKind",
    "FolderAccess",
    "OrphanType",
    "OperationKind",
]


class ProviderKind(Enum):
    """Closed set of backend families behind the provider contract."""

    LOCAL = "local"
    S3 = "s3"
    AZURE_BLOB = "azure"

    @classmethod
    def _missing_(cls, value: object) -> ProviderKind | None:
        aliases = {
            "filesystem": cls.LOCAL,
            "object-store": cls.S3,
            "object_store": cls.S3,
            "minio": cls.S3,
            "blob-store": cls.AZURE_BLOB,
            "blob_store": cls.AZURE_BLOB,
            "azure_blob": cls.AZURE_BLOB,
        }
        if isinstance(value, str):
            return aliases.get(value.strip().lower())
        return None


class FolderAccess(Enum):
    """Access level of a logical folder."""

    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    PRIVATE = "private"


class OrphanType(Enum):
    """Kinds of registry/backend divergence."""

    IN_STORAGE = "in_storage"  # object without a registry row
    IN_DATABASE = "in_database"  # registry row without an object
    MISMATCHED = "mismatched"  # row and object disagree on location


class OperationKind(Enum):
    """Storage operations tracked by the metrics collector."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    LIST = "list"
