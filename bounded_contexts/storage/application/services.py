"""Storage application service: the only writer of registry rows."""

from __future__ import annotations

import logging
import mimetypes
import uuid
from datetime import datetime
from typing import IO, Callable, Iterable, Optional

from core.logging_config import StructuredLogger
from core.time import utc_now

from ..domain import (
    BatchDeleteResponse,
    BatchItemResult,
    BatchOperationError,
    BatchUploadResponse,
    FileRegistry,
    FileValidator,
    OperationKind,
    OrphanType,
    OrphanedFileError,
    ProviderError,
    RegistryError,
    StorageConfig,
    StorageException,
    StorageFile,
    StorageNotFoundError,
    StoragePathBuilder,
    StorageProvider,
    StorageValidationError,
    UploadItem,
)
from ..infrastructure import ProviderPool, StorageConfigHolder
from .metrics import OperationTiming, StorageMetricsCollector
from .quota import QuotaManager

__all__ = ["StorageApplicationService"]

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
_STORED_NAME_ATTEMPTS = 5


class StorageApplicationService:
    """Upload, read, list, edit and delete registered files.

    Upload order: validate, check quota, write the object, insert the row.
    A failed write leaves no row behind; a failed insert after a successful
    write is reported as an ``in_storage`` orphan for the reconciler.

    Delete order: remove the object, then the row.  A failed object delete
    keeps the row; a failed row delete after the object is gone is reported
    as an ``in_database`` orphan.
    """

    def __init__(
        self,
        config: StorageConfigHolder,
        providers: ProviderPool,
        registry: FileRegistry,
        quota: QuotaManager,
        metrics: StorageMetricsCollector,
        *,
        validator: Optional[FileValidator] = None,
        path_builder: Optional[StoragePathBuilder] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._providers = providers
        self._registry = registry
        self._quota = quota
        self._metrics = metrics
        self._validator = validator or FileValidator()
        self._paths = path_builder or StoragePathBuilder()
        self._new_id = id_factory
        self._clock = clock
        self._log = StructuredLogger(logger)

    # =============================================================
    # Write path
    # =============================================================

    def upload_file(
        self,
        folder: str,
        content: bytes,
        original_name: str,
        *,
        mime_type: Optional[str] = None,
        description: Optional[str] = None,
        uploaded_by: Optional[str] = None,
    ) -> StorageFile:
        config = self._config.current
        size = len(content)

        # Rejections before the write are not charged to any provider.
        with self._metrics.timed(OperationKind.UPLOAD) as timing:
            outcome = self._validator.validate(config, folder, original_name, size)
            for warning in outcome.warnings:
                logger.warning(
                    warning,
                    extra={"event": "storage.upload.warning", "folder": folder, "original_name": original_name},
                )

            self._quota.check_quota(folder, size)

            file_id, stored_filename = self._allocate_name(folder, original_name)
            relative_path = self._paths.relative_path(outcome.folder, stored_filename)
            content_type = mime_type or mimetypes.guess_type(original_name)[0] or DEFAULT_MIME_TYPE

            provider, provider_path = self._put_with_failover(
                config, content, relative_path, content_type, timing
            )

            now = self._clock()
            stored = StorageFile(
                id=file_id,
                original_name=original_name,
                stored_filename=stored_filename,
                folder=folder,
                relative_path=relative_path,
                provider_path=provider_path,
                size=size,
                mime_type=content_type,
                created_at=now,
                updated_at=now,
                description=description,
                uploaded_by=uploaded_by,
            )
            try:
                self._registry.add(stored)
            except RegistryError as exc:
                self._log.error(
                    "storage.upload.orphaned",
                    provider=provider.name,
                    provider_path=provider_path,
                    file_id=file_id,
                    error=exc.message,
                )
                raise OrphanedFileError(
                    provider_path,
                    OrphanType.IN_STORAGE.value,
                    provider=provider.name,
                    file_id=file_id,
                ) from exc
            timing.bytes = size

        self._log.info(
            "storage.upload.completed",
            provider=provider.name,
            file_id=file_id,
            folder=folder,
            size=size,
            uploaded_by=uploaded_by,
        )
        return stored

    def _put_with_failover(
        self,
        config: StorageConfig,
        content: bytes,
        relative_path: str,
        content_type: str,
        timing: OperationTiming,
    ) -> tuple[StorageProvider, str]:
        """Write to the active provider, then to each enabled failover target.

        Only :class:`ProviderError` moves on to the next candidate; the last
        one is re-raised when every candidate failed.
        """

        candidates = [config.active_provider]
        candidates += [
            name
            for name in config.failover_providers
            if name not in candidates and name in config.enabled_providers
        ]
        last_error: Optional[ProviderError] = None
        for name in candidates:
            timing.provider = name
            try:
                provider = self._providers.get(name)
                provider_path = provider.locate(relative_path)
                provider.put(content, provider_path, content_type=content_type)
            except ProviderError as exc:
                last_error = exc
                self._log.warning(
                    "storage.upload.provider_failed",
                    provider=name,
                    relative_path=relative_path,
                    error=exc.message,
                    code=exc.code,
                )
                continue
            if name != config.active_provider:
                self._log.warning(
                    "storage.upload.failover",
                    provider=name,
                    active=config.active_provider,
                    relative_path=relative_path,
                )
            return provider, provider_path
        assert last_error is not None
        raise last_error

    def _allocate_name(self, folder: str, original_name: str) -> tuple[str, str]:
        for _ in range(_STORED_NAME_ATTEMPTS):
            file_id = self._new_id()
            stored_filename = self._paths.stored_filename(original_name, file_id)
            if not self._registry.stored_name_exists(folder, stored_filename):
                return file_id, stored_filename
        raise StorageException(
            f"Could not allocate a unique stored name for '{original_name}'",
            folder=folder,
        )

    def update_file(self, file_id: str, description: Optional[str]) -> StorageFile:
        """Edit the description; stored content never changes."""

        updated = self._registry.update_description(file_id, description, self._clock())
        if updated is None:
            raise StorageNotFoundError(f"File '{file_id}' not found", file_id=file_id)
        return updated

    def delete_file(self, file_id: str, user_id: Optional[str] = None) -> None:
        stored = self.get_file(file_id)
        provider = self._provider_for(stored)

        with self._metrics.timed(OperationKind.DELETE, provider.name):
            try:
                provider.delete(stored.provider_path)
            except StorageNotFoundError:
                self._log.warning(
                    "storage.delete.object_missing",
                    provider=provider.name,
                    provider_path=stored.provider_path,
                    file_id=file_id,
                )
            try:
                self._registry.delete(file_id)
            except RegistryError as exc:
                self._log.error(
                    "storage.delete.orphaned",
                    provider=provider.name,
                    provider_path=stored.provider_path,
                    file_id=file_id,
                    error=exc.message,
                )
                raise OrphanedFileError(
                    stored.provider_path,
                    OrphanType.IN_DATABASE.value,
                    provider=provider.name,
                    file_id=file_id,
                ) from exc

        self._log.info(
            "storage.delete.completed",
            provider=provider.name,
            file_id=file_id,
            user_id=user_id,
        )

    # =============================================================
    # Read path
    # =============================================================

    def get_file(self, file_id: str) -> StorageFile:
        stored = self._registry.get(file_id)
        if stored is None:
            raise StorageNotFoundError(f"File '{file_id}' not found", file_id=file_id)
        return stored

    def open_file(self, file_id: str) -> IO[bytes]:
        """Return a binary stream; the caller closes it."""

        stored = self.get_file(file_id)
        provider = self._provider_for(stored)
        with self._metrics.timed(OperationKind.DOWNLOAD, provider.name) as timing:
            stream = provider.get(stored.provider_path)
            timing.bytes = stored.size
        return stream

    def get_file_content(self, file_id: str) -> bytes:
        stored = self.get_file(file_id)
        provider = self._provider_for(stored)
        with self._metrics.timed(OperationKind.DOWNLOAD, provider.name) as timing:
            stream = provider.get(stored.provider_path)
            try:
                content = stream.read()
            finally:
                stream.close()
            timing.bytes = len(content)
        return content

    def list_files(self, folder: str) -> list[StorageFile]:
        if self._config.current.folder(folder) is None:
            raise StorageValidationError(
                f"Storage folder '{folder}' not found", field="folder", value=folder
            )
        with self._metrics.timed(OperationKind.LIST, self._config.current.active_provider):
            return self._registry.list_folder(folder)

    # =============================================================
    # Batch operations
    # =============================================================

    def batch_upload(
        self,
        folder: str,
        items: Iterable[UploadItem],
        uploaded_by: Optional[str] = None,
        *,
        fail_on_total_failure: bool = False,
    ) -> BatchUploadResponse:
        response = BatchUploadResponse()
        for item in items:
            try:
                stored = self.upload_file(
                    folder,
                    item.content,
                    item.original_name,
                    mime_type=item.mime_type,
                    description=item.description,
                    uploaded_by=uploaded_by,
                )
            except StorageException as exc:
                response.add(BatchItemResult(
                    item=item.original_name, success=False, error=exc.message, error_code=exc.code
                ))
            else:
                response.add(BatchItemResult(item=item.original_name, success=True, file=stored))

        self._finish_batch("upload", response, fail_on_total_failure)
        return response

    def batch_delete(
        self,
        file_ids: Iterable[str],
        user_id: Optional[str] = None,
        *,
        fail_on_total_failure: bool = False,
    ) -> BatchDeleteResponse:
        response = BatchDeleteResponse()
        for file_id in file_ids:
            try:
                self.delete_file(file_id, user_id=user_id)
            except StorageException as exc:
                response.add(BatchItemResult(
                    item=file_id, success=False, error=exc.message, error_code=exc.code
                ))
            else:
                response.add(BatchItemResult(item=file_id, success=True))

        self._finish_batch("delete", response, fail_on_total_failure)
        return response

    def _finish_batch(self, operation: str, response, fail_on_total_failure: bool) -> None:
        summary = response.error_summary
        self._log.info(
            f"storage.batch_{operation}.completed",
            total=response.total,
            successful=response.successful_count,
            failed=response.failed_count,
            errors_by_type=summary.by_type if summary else {},
        )
        if fail_on_total_failure and response.total and response.failed_count == response.total:
            error = BatchOperationError(
                f"All {response.total} items of batch {operation} failed",
                operation=operation,
                total=response.total,
                failed=response.failed_count,
            )
            error.response = response
            raise error

    # =============================================================
    # Helpers
    # =============================================================

    def _provider_for(self, stored: StorageFile) -> StorageProvider:
        active = self._providers.active()
        if active.owns(stored.provider_path):
            return active
        for name in self._providers.enabled_names():
            if name == active.name:
                continue
            provider = self._providers.get(name)
            if provider.owns(stored.provider_path):
                return provider
        raise ProviderError(
            f"No enabled provider owns '{stored.provider_path}'",
            file_id=stored.id,
            path=stored.provider_path,
        )
