"""Storage governance entities and result value objects."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from .types import OrphanType

__all__ = [
    "StorageFile",
    "StoredObject",
    "UploadItem",
    "OrphanedFile",
    "CleanupError",
    "CleanupResult",
    "BatchItemResult",
    "ErrorSummary",
    "BatchUploadResponse",
    "BatchDeleteResponse",
    "QuotaStatus",
    "UsageBucket",
    "UsageReport",
]


@dataclass(frozen=True, slots=True)
class StorageFile:
    """A file registry row.

    ``provider_path`` is the only locator used to address the backend;
    ``relative_path`` is kept for presentation.  Content is immutable once
    stored, only ``description`` may change.
    """

    id: str
    original_name: str
    stored_filename: str
    folder: str
    relative_path: str
    provider_path: str
    size: int
    mime_type: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    uploaded_by: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("id must not be empty")
        if not self.provider_path:
            raise ValueError("provider_path must not be empty")
        if self.size < 0:
            raise ValueError("size must be non-negative")

    def with_description(self, description: str | None, updated_at: datetime) -> StorageFile:
        return replace(self, description=description, updated_at=updated_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "stored_filename": self.stored_filename,
            "folder": self.folder,
            "relative_path": self.relative_path,
            "provider_path": self.provider_path,
            "size": self.size,
            "mime_type": self.mime_type,
            "description": self.description,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class StoredObject:
    """One entry of a provider listing."""

    path: str
    size: int | None = None


@dataclass(frozen=True, slots=True)
class UploadItem:
    """A single file submitted for upload."""

    content: bytes
    original_name: str
    mime_type: str | None = None
    description: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True, slots=True)
class OrphanedFile:
    """A registry/backend discrepancy found by reconciliation (never persisted)."""

    path: str
    type: OrphanType
    provider: str
    file_id: str | None = None
    size: int | None = None


@dataclass(frozen=True, slots=True)
class CleanupError:
    file: str
    error: str
    code: str | None = None


@dataclass(slots=True)
class CleanupResult:
    """Outcome of a cleanup pass over a list of orphans."""

    scanned: int = 0
    cleaned: int = 0
    skipped: int = 0
    errors: list[CleanupError] = field(default_factory=list)
    orphaned: list[OrphanedFile] = field(default_factory=list)
    dry_run: bool = False
    provider: str | None = None

    @property
    def failed(self) -> int:
        return len(self.errors)


@dataclass(frozen=True, slots=True)
class BatchItemResult:
    """Per item outcome of a batch upload or delete."""

    item: str
    success: bool
    file: StorageFile | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass(frozen=True, slots=True)
class ErrorSummary:
    by_type: dict[str, int]
    by_error: list[tuple[str, int]]
    total_errors: int

    @classmethod
    def from_failures(cls, failures: list[BatchItemResult]) -> ErrorSummary:
        by_type = Counter(item.error_code or "UNKNOWN" for item in failures)
        by_error = Counter(item.error or "Unknown error" for item in failures)
        return cls(
            by_type=dict(by_type),
            by_error=by_error.most_common(),
            total_errors=len(failures),
        )


@dataclass(slots=True)
class _BatchResponse:
    successful: list[BatchItemResult] = field(default_factory=list)
    failed: list[BatchItemResult] = field(default_factory=list)

    def add(self, result: BatchItemResult) -> None:
        (self.successful if result.success else self.failed).append(result)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    @property
    def successful_count(self) -> int:
        return len(self.successful)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def error_summary(self) -> ErrorSummary | None:
        if not self.failed:
            return None
        return ErrorSummary.from_failures(self.failed)


@dataclass(slots=True)
class BatchUploadResponse(_BatchResponse):
    """Successes and failures of a multi-file upload."""


@dataclass(slots=True)
class BatchDeleteResponse(_BatchResponse):
    """Successes and failures of a multi-file delete."""


@dataclass(frozen=True, slots=True)
class QuotaStatus:
    """Usage against one quota scope."""

    scope: str
    limit: int
    used: int
    available: int
    percentage: float
    limit_formatted: str
    used_formatted: str
    available_formatted: str


@dataclass(frozen=True, slots=True)
class UsageBucket:
    files: int = 0
    size: int = 0
    size_formatted: str = "0 B"


@dataclass(frozen=True, slots=True)
class UsageReport:
    total: UsageBucket
    by_folder: dict[str, UsageBucket]
    by_provider: dict[str, UsageBucket]
    timestamp: datetime
