"""Storage governance domain services and collaborator protocols."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath, PureWindowsPath
from typing import IO, Iterator, Protocol, runtime_checkable

from .config import FolderConfiguration, StorageConfig
from .entities import StorageFile, StoredObject
from .errors import StorageValidationError
from .types import ProviderKind
from .units import format_bytes

__all__ = [
    "StorageProvider",
    "FileRegistry",
    "StoragePathBuilder",
    "FileValidator",
    "ValidationOutcome",
]


@runtime_checkable
class StorageProvider(Protocol):
    """Uniform contract over heterogeneous storage backends.

    Paths returned by :meth:`list` are provider paths and can be handed back
    to :meth:`get` and :meth:`delete` unchanged.  Implementations raise
    :class:`~.errors.StorageNotFoundError` for absent objects and
    :class:`~.errors.ProviderError` (or a subclass) when the backend cannot be
    reached, so callers can tell the two situations apart.
    """

    name: str
    kind: ProviderKind

    def locate(self, relative_path: str) -> str:
        """Return the provider path for a folder relative path."""
        ...

    def owns(self, provider_path: str) -> bool:
        """Return whether *provider_path* addresses this provider."""
        ...

    def relative_path(self, provider_path: str) -> str | None:
        """Inverse of :meth:`locate`; ``None`` for foreign paths."""
        ...

    def list(
        self,
        prefix: str = "",
        *,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[StoredObject]:
        """Yield every object below *prefix*, following pagination to the end."""
        ...

    def put(self, content: bytes, provider_path: str, *, content_type: str | None = None) -> None:
        ...

    def get(self, provider_path: str) -> IO[bytes]:
        ...

    def delete(self, provider_path: str, *, missing_ok: bool = False) -> None:
        ...

    def exists(self, provider_path: str) -> bool:
        ...


@runtime_checkable
class FileRegistry(Protocol):
    """Durable mapping from file identifier to :class:`StorageFile`."""

    def add(self, file: StorageFile) -> None:
        ...

    def get(self, file_id: str) -> StorageFile | None:
        ...

    def get_by_provider_path(self, provider_path: str) -> StorageFile | None:
        ...

    def delete(self, file_id: str) -> bool:
        ...

    def update_description(
        self, file_id: str, description: str | None, updated_at: datetime
    ) -> StorageFile | None:
        ...

    def iter_pages(self, page_size: int = 500) -> Iterator[list[StorageFile]]:
        """Yield the complete registry in pages ordered by identifier."""
        ...

    def list_folder(self, folder: str) -> list[StorageFile]:
        ...

    def stored_name_exists(self, folder: str, stored_filename: str) -> bool:
        ...

    def total_usage(self) -> tuple[int, int]:
        """Return ``(file_count, total_bytes)`` across every folder."""
        ...

    def folder_usage(self, folder: str) -> tuple[int, int]:
        ...

    def usage_by_folder(self) -> dict[str, tuple[int, int]]:
        ...


_UNSAFE_CHARS = re.compile(r"[^\w.\- ]+", re.UNICODE)


class StoragePathBuilder:
    """Derive stored filenames and folder relative paths."""

    fallback_stem = "file"

    def stored_filename(self, original_name: str, file_id: str) -> str:
        """Keep the original name readable and make it unique with *file_id*.

        ``"report.pdf"`` becomes ``"report.<file_id>.pdf"``.  Directory parts
        of the submitted name are dropped.
        """
        name = PureWindowsPath(PurePosixPath(original_name).name).name
        path = PurePosixPath(name)
        suffix = path.suffix if path.stem else ""
        stem = path.stem if path.stem else name
        stem = _UNSAFE_CHARS.sub("_", stem).strip(" .") or self.fallback_stem
        suffix = _UNSAFE_CHARS.sub("", suffix)
        return f"{stem}.{file_id}{suffix}"

    def relative_path(self, folder: FolderConfiguration, stored_filename: str) -> str:
        return f"{folder.path}/{stored_filename}"


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    folder: FolderConfiguration
    extension: str
    warnings: tuple[str, ...] = field(default_factory=tuple)


class FileValidator:
    """Check an upload against its folder rules before any I/O happens."""

    suspicious_extensions = frozenset({"exe", "bat", "cmd", "sh", "ps1"})

    def validate(
        self,
        config: StorageConfig,
        folder_name: str,
        original_name: str,
        size: int,
    ) -> ValidationOutcome:
        folder = config.folder(folder_name)
        if folder is None:
            raise StorageValidationError(
                f"Storage folder '{folder_name}' not found",
                field="folder",
                value=folder_name,
                rule="configured_folder",
            )

        extension = PurePosixPath(original_name).suffix.lower().lstrip(".")
        if not folder.allows_extension(extension):
            raise StorageValidationError(
                f"File type '{extension or '(none)'}' not allowed in folder '{folder.name}'",
                field="extension",
                value=extension,
                rule="allowed_types",
                expected=sorted(folder.allowed_types),
                folder=folder.name,
            )

        if folder.max_size and size > folder.max_size:
            raise StorageValidationError(
                f"File size {format_bytes(size)} exceeds limit {format_bytes(folder.max_size)}",
                field="size",
                value=size,
                rule="max_size",
                expected=folder.max_size,
                folder=folder.name,
            )

        warnings: list[str] = []
        if extension in self.suspicious_extensions:
            warnings.append(f"Executable file type '{extension}' detected")
        return ValidationOutcome(folder=folder, extension=extension, warnings=tuple(warnings))
