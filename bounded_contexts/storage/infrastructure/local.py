"""Local filesystem provider."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path, PurePosixPath
from typing import IO, Iterator

from ..domain import (
    LocalProviderConfig,
    OperationCancelledError,
    ProviderError,
    ProviderKind,
    StorageNotFoundError,
    StoragePermissionError,
    StoredObject,
)

__all__ = ["LocalStorageProvider"]

logger = logging.getLogger(__name__)


class LocalStorageProvider:
    """Provider backed by a directory tree.

    Provider paths are absolute filesystem paths below the configured root,
    so listing output is byte-identical to what :meth:`get` and
    :meth:`delete` accept.
    """

    kind = ProviderKind.LOCAL

    def __init__(self, configuration: LocalProviderConfig) -> None:
        self.name = configuration.name
        self._configuration = configuration
        self._root = Path(configuration.path).expanduser().resolve()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except PermissionError as exc:
            raise StoragePermissionError(
                f"Cannot create storage root {self._root}: {exc}", provider=self.name
            ) from exc
        except OSError as exc:
            raise ProviderError(
                f"Cannot create storage root {self._root}: {exc}", provider=self.name
            ) from exc

    @property
    def root(self) -> Path:
        return self._root

    def locate(self, relative_path: str) -> str:
        relative = PurePosixPath(relative_path)
        if relative.is_absolute() or ".." in relative.parts:
            raise StoragePermissionError(
                f"Relative path escapes the storage root: {relative_path}",
                provider=self.name,
                path=relative_path,
            )
        return str(self._root.joinpath(*relative.parts))

    def owns(self, provider_path: str) -> bool:
        path = Path(provider_path)
        return path.is_absolute() and ".." not in path.parts and path.is_relative_to(self._root)

    def relative_path(self, provider_path: str) -> str | None:
        if not self.owns(provider_path):
            return None
        return Path(provider_path).relative_to(self._root).as_posix()

    def list(
        self,
        prefix: str = "",
        *,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[StoredObject]:
        self._require_root()
        base = Path(self.locate(prefix)) if prefix else self._root
        if not base.exists():
            return

        def _raise(error: OSError) -> None:
            raise error

        try:
            # os.walk yields one directory at a time; each directory is a page.
            for directory, dirnames, filenames in os.walk(base, onerror=_raise):
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(
                        f"Listing of provider '{self.name}' cancelled", provider=self.name
                    )
                dirnames.sort()
                for filename in sorted(filenames):
                    full_path = os.path.join(directory, filename)
                    try:
                        size = os.stat(full_path).st_size
                    except FileNotFoundError:
                        # Removed between the directory read and stat.
                        continue
                    yield StoredObject(path=full_path, size=size)
        except PermissionError as exc:
            raise StoragePermissionError(
                f"Permission denied while listing {base}: {exc}", provider=self.name
            ) from exc
        except OSError as exc:
            raise ProviderError(f"Listing {base} failed: {exc}", provider=self.name) from exc

    def put(self, content: bytes, provider_path: str, *, content_type: str | None = None) -> None:
        path = self._checked(provider_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # "x" refuses to overwrite: stored content is immutable.
            with path.open("xb") as handle:
                handle.write(content)
        except FileExistsError as exc:
            raise ProviderError(
                f"Object already exists: {provider_path}", provider=self.name, path=provider_path
            ) from exc
        except PermissionError as exc:
            raise StoragePermissionError(
                f"Write permission denied: {provider_path}", provider=self.name, path=provider_path
            ) from exc
        except OSError as exc:
            path.unlink(missing_ok=True)
            raise ProviderError(
                f"Write failed for {provider_path}: {exc}", provider=self.name, path=provider_path
            ) from exc
        logger.debug("Stored %d bytes at %s", len(content), provider_path)

    def get(self, provider_path: str) -> IO[bytes]:
        path = self._checked(provider_path)
        try:
            return path.open("rb")
        except (FileNotFoundError, IsADirectoryError) as exc:
            raise StorageNotFoundError(
                f"Object not found: {provider_path}", provider=self.name, path=provider_path
            ) from exc
        except PermissionError as exc:
            raise StoragePermissionError(
                f"Read permission denied: {provider_path}", provider=self.name, path=provider_path
            ) from exc
        except OSError as exc:
            raise ProviderError(
                f"Read failed for {provider_path}: {exc}", provider=self.name, path=provider_path
            ) from exc

    def delete(self, provider_path: str, *, missing_ok: bool = False) -> None:
        path = self._checked(provider_path)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            if missing_ok:
                return
            raise StorageNotFoundError(
                f"Object not found: {provider_path}", provider=self.name, path=provider_path
            ) from exc
        except PermissionError as exc:
            raise StoragePermissionError(
                f"Delete permission denied: {provider_path}", provider=self.name, path=provider_path
            ) from exc
        except OSError as exc:
            raise ProviderError(
                f"Delete failed for {provider_path}: {exc}", provider=self.name, path=provider_path
            ) from exc

    def exists(self, provider_path: str) -> bool:
        return self._checked(provider_path).is_file()

    def _checked(self, provider_path: str) -> Path:
        if not self.owns(provider_path):
            raise StoragePermissionError(
                f"Path is outside the root of provider '{self.name}': {provider_path}",
                provider=self.name,
                path=provider_path,
            )
        self._require_root()
        return Path(provider_path)

    def _require_root(self) -> None:
        # A vanished root is an outage, never an empty backend.
        if not self._root.is_dir():
            raise ProviderError(
                f"Storage root {self._root} of provider '{self.name}' is unavailable",
                provider=self.name,
                path=str(self._root),
            )
