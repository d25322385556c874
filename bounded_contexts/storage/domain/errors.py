"""Storage domain exceptions.

Every rejection surfaced to callers carries a machine readable ``code`` and a
human readable message.  Provider adapters translate SDK specific exceptions
into this hierarchy so that nothing above the adapter boundary has to know
about ``botocore`` or ``azure-core`` error types.
"""

from __future__ import annotations

from typing import Any

from .units import format_bytes

__all__ = [
    "StorageException",
    "StorageValidationError",
    "StorageConfigurationError",
    "QuotaExceededError",
    "ProviderError",
    "StorageTimeoutError",
    "StoragePermissionError",
    "StorageNotFoundError",
    "OrphanedFileError",
    "RegistryError",
    "BatchOperationError",
    "OperationCancelledError",
]


class StorageException(Exception):
    """Base class for storage governance errors."""

    code = "STORAGE_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON serialisable description of the error."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.context:
            payload["context"] = dict(self.context)
        return payload


class StorageValidationError(StorageException):
    """Input rejected before any I/O (folder, extension or size)."""

    code = "STORAGE_VALIDATION_ERROR"
    status_code = 400


class StorageConfigurationError(StorageException):
    """Invalid provider or folder configuration."""

    code = "STORAGE_CONFIGURATION_ERROR"


class QuotaExceededError(StorageException):
    """An upload would push usage beyond a global or folder limit."""

    code = "STORAGE_QUOTA_EXCEEDED"
    status_code = 413

    def __init__(
        self,
        *,
        used: int,
        limit: int,
        available: int,
        scope: str,
        folder: str | None = None,
        file_size: int | None = None,
    ) -> None:
        message = (
            f"Storage quota exceeded ({scope}). "
            f"Available: {format_bytes(available)}, Limit: {format_bytes(limit)}"
        )
        super().__init__(
            message,
            used=used,
            limit=limit,
            available=available,
            unit="bytes",
            scope=scope,
            folder=folder,
            file_size=file_size,
        )
        self.used = used
        self.limit = limit
        self.available = available
        self.scope = scope


class ProviderError(StorageException):
    """Backend unreachable, failing, or refusing the request."""

    code = "STORAGE_PROVIDER_UNAVAILABLE"
    status_code = 503
    retryable = True

    def __init__(self, message: str, *, provider: str | None = None, **context: Any) -> None:
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class StorageTimeoutError(ProviderError):
    code = "STORAGE_TIMEOUT"
    status_code = 504


class StoragePermissionError(ProviderError):
    code = "STORAGE_PERMISSION_DENIED"
    status_code = 403
    retryable = False


class StorageNotFoundError(StorageException):
    """The object or registry row legitimately does not exist."""

    code = "STORAGE_FILE_NOT_FOUND"
    status_code = 404


class OrphanedFileError(StorageException):
    """Registry and backend disagree outside of a reconciliation window."""

    code = "STORAGE_ORPHANED_FILE"

    _DESCRIPTIONS = {
        "in_storage": "exists in storage but not in the registry",
        "in_database": "exists in the registry but not in storage",
        "mismatched": "has mismatched registry and storage paths",
    }

    def __init__(self, path: str, orphan_type: str, **context: Any) -> None:
        description = self._DESCRIPTIONS.get(orphan_type, orphan_type)
        super().__init__(f"Orphaned file '{path}' {description}", path=path, orphan_type=orphan_type, **context)
        self.path = path
        self.orphan_type = orphan_type


class RegistryError(StorageException):
    """The file registry could not be read or written."""

    code = "STORAGE_REGISTRY_ERROR"


class BatchOperationError(StorageException):
    """Every item of a batch operation failed."""

    code = "STORAGE_BATCH_OPERATION_ERROR"

    def __init__(self, message: str, *, operation: str, total: int, failed: int, **context: Any) -> None:
        super().__init__(message, operation=operation, total=total, failed=failed, **context)
        self.status_code = 500 if total and failed == total else 207


class OperationCancelledError(StorageException):
    """A long running listing or scan was cancelled between pages."""

    code = "STORAGE_OPERATION_CANCELLED"
    status_code = 499
