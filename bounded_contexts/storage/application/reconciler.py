"""Registry/backend reconciliation.

A scan compares the complete registry against the complete listing of one
provider.  The scan only reads; :meth:`OrphanedFileReconciler.cleanup_orphaned_files`
is the only step that mutates either side.

Uploads running during a scan can surface as orphans (the row is read before
the object is listed).  Cleanup therefore re-checks each ``in_storage`` and
``in_database`` candidate right before acting and skips it when the other
side has appeared in the meantime.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

from core.logging_config import StructuredLogger, log_storage_error

from ..domain import (
    CleanupError,
    CleanupResult,
    FileRegistry,
    OperationCancelledError,
    OperationKind,
    OrphanType,
    OrphanedFile,
    StorageException,
    StorageFile,
    StorageProvider,
)
from ..infrastructure import ProviderPool
from .metrics import StorageMetricsCollector

__all__ = ["OrphanedFileReconciler"]

logger = logging.getLogger(__name__)


def _check_cancelled(cancel_event: Optional[threading.Event], provider: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError(f"Reconciliation of '{provider}' cancelled", provider=provider)


class OrphanedFileReconciler:
    def __init__(
        self,
        providers: ProviderPool,
        registry: FileRegistry,
        *,
        metrics: Optional[StorageMetricsCollector] = None,
        page_size: int = 500,
    ) -> None:
        self._providers = providers
        self._registry = registry
        self._metrics = metrics
        self._page_size = page_size
        self._log = StructuredLogger(logger)

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------
    def find_orphaned_files(
        self,
        provider_name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[OrphanedFile]:
        """Return every discrepancy between the registry and *provider_name*.

        Rows that another enabled provider owns are ignored.  A listed object
        with no row at its path but a row at the same relative path is
        reported as ``mismatched``; that row is then not also reported as
        ``in_database``.

        Raises:
            OperationCancelledError: *cancel_event* was set between pages.
            ProviderError: the backend could not be listed; no orphans are
                reported for it.
        """

        provider = self._providers.get(provider_name)
        log = self._log.bind(provider=provider_name)
        log.info("storage.reconcile.scan_started")

        owned, stale_by_relative = self._load_registry(provider, cancel_event)
        listed = self._list_backend(provider, cancel_event)

        orphans: list[OrphanedFile] = []
        mismatched_ids: set[str] = set()
        owned_by_relative = {row.relative_path: row for row in owned.values()}
        for path, size in listed.items():
            if path in owned:
                continue
            relative = provider.relative_path(path)
            row = None
            if relative is not None:
                row = owned_by_relative.get(relative) or stale_by_relative.get(relative)
            if row is not None and row.id not in mismatched_ids:
                mismatched_ids.add(row.id)
                orphans.append(OrphanedFile(
                    path=path, type=OrphanType.MISMATCHED, provider=provider_name, file_id=row.id, size=size
                ))
            else:
                orphans.append(OrphanedFile(
                    path=path, type=OrphanType.IN_STORAGE, provider=provider_name, size=size
                ))

        for path, row in owned.items():
            if path not in listed and row.id not in mismatched_ids:
                orphans.append(OrphanedFile(
                    path=path, type=OrphanType.IN_DATABASE, provider=provider_name, file_id=row.id, size=row.size
                ))

        log.info(
            "storage.reconcile.scan_completed",
            registry_rows=len(owned),
            listed_objects=len(listed),
            orphans=len(orphans),
        )
        return orphans

    def _load_registry(
        self,
        provider: StorageProvider,
        cancel_event: Optional[threading.Event],
    ) -> tuple[dict[str, StorageFile], dict[str, StorageFile]]:
        others = self._other_providers(provider.name)
        owned: dict[str, StorageFile] = {}
        stale: dict[str, StorageFile] = {}
        for page in self._registry.iter_pages(self._page_size):
            _check_cancelled(cancel_event, provider.name)
            for row in page:
                if provider.owns(row.provider_path):
                    owned[row.provider_path] = row
                elif others is not None and not any(other.owns(row.provider_path) for other in others):
                    stale[row.relative_path] = row
        _check_cancelled(cancel_event, provider.name)
        return owned, stale

    def _other_providers(self, provider_name: str) -> Optional[list[StorageProvider]]:
        """Other enabled providers, or ``None`` when one cannot be built.

        Without the full set, a row outside *provider_name* cannot be told
        apart from a row of a provider that failed to load, so stale rows are
        not considered for mismatch detection.
        """

        others: list[StorageProvider] = []
        for name in self._providers.enabled_names():
            if name == provider_name:
                continue
            try:
                others.append(self._providers.get(name))
            except StorageException as exc:
                self._log.warning(
                    "storage.reconcile.provider_unavailable",
                    provider=provider_name,
                    other=name,
                    error=exc.message,
                )
                return None
        return others

    def _list_backend(
        self,
        provider: StorageProvider,
        cancel_event: Optional[threading.Event],
    ) -> dict[str, Optional[int]]:
        listed: dict[str, Optional[int]] = {}
        if self._metrics is None:
            for item in provider.list(cancel_event=cancel_event):
                listed[item.path] = item.size
            return listed
        with self._metrics.timed(OperationKind.LIST, provider.name):
            for item in provider.list(cancel_event=cancel_event):
                listed[item.path] = item.size
        return listed

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------
    def cleanup_orphaned_files(
        self,
        orphans: Iterable[OrphanedFile],
        dry_run: bool = False,
        *,
        provider_name: Optional[str] = None,
    ) -> CleanupResult:
        """Remove the side of each orphan that exists.

        ``in_storage`` deletes the object, ``in_database`` deletes the row and
        ``mismatched`` deletes both.  A dry run only logs and counts each item
        as cleaned.  Failures are recorded per item and never stop the batch.
        """

        orphans = list(orphans)
        result = CleanupResult(
            scanned=len(orphans), orphaned=orphans, dry_run=dry_run, provider=provider_name
        )
        for orphan in orphans:
            log = self._log.bind(provider=orphan.provider, path=orphan.path, type=orphan.type.value)
            if dry_run:
                log.info("storage.reconcile.would_clean", file_id=orphan.file_id)
                result.cleaned += 1
                continue
            try:
                if self._clean(orphan):
                    result.cleaned += 1
                    log.info("storage.reconcile.cleaned", file_id=orphan.file_id)
                else:
                    result.skipped += 1
                    log.warning("storage.reconcile.skipped", file_id=orphan.file_id)
            except StorageException as exc:
                result.errors.append(CleanupError(file=orphan.path, error=exc.message, code=exc.code))
                log.error("storage.reconcile.clean_failed", file_id=orphan.file_id, error=exc.message, code=exc.code)
            except Exception as exc:
                result.errors.append(CleanupError(file=orphan.path, error=str(exc)))
                log_storage_error(
                    logger,
                    f"Unexpected failure cleaning {orphan.path}",
                    "storage.reconcile.clean_failed",
                    provider=orphan.provider,
                )
        return result

    def _clean(self, orphan: OrphanedFile) -> bool:
        provider = self._providers.get(orphan.provider)
        if orphan.type is OrphanType.IN_STORAGE:
            if self._registry.get_by_provider_path(orphan.path) is not None:
                return False
            self._delete_object(provider, orphan.path)
            return True
        if orphan.type is OrphanType.IN_DATABASE:
            if orphan.file_id is None or provider.exists(orphan.path):
                return False
            self._registry.delete(orphan.file_id)
            return True
        self._delete_object(provider, orphan.path)
        if orphan.file_id is not None:
            self._registry.delete(orphan.file_id)
        return True

    def _delete_object(self, provider: StorageProvider, path: str) -> None:
        if self._metrics is None:
            provider.delete(path, missing_ok=True)
            return
        with self._metrics.timed(OperationKind.DELETE, provider.name):
            provider.delete(path, missing_ok=True)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def reconcile(
        self,
        provider_name: str,
        dry_run: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ) -> CleanupResult:
        orphans = self.find_orphaned_files(provider_name, cancel_event)
        result = self.cleanup_orphaned_files(orphans, dry_run, provider_name=provider_name)
        self._log.info(
            "storage.reconcile.completed",
            provider=provider_name,
            dry_run=dry_run,
            scanned=result.scanned,
            cleaned=result.cleaned,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    def reconcile_all(
        self,
        dry_run: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ) -> dict[str, CleanupResult]:
        """Reconcile every enabled provider; one provider failing does not stop the rest."""

        results: dict[str, CleanupResult] = {}
        for name in self._providers.enabled_names():
            try:
                results[name] = self.reconcile(name, dry_run, cancel_event)
            except OperationCancelledError:
                raise
            except StorageException as exc:
                self._log.error(
                    "storage.reconcile.provider_failed", provider=name, error=exc.message, code=exc.code
                )
                results[name] = CleanupResult(
                    dry_run=dry_run,
                    provider=name,
                    errors=[CleanupError(file=name, error=exc.message, code=exc.code)],
                )
        return results
