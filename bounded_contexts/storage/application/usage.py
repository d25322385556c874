"""Storage usage reporting computed from the file registry."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from core.time import utc_now

from ..domain import FileRegistry, StorageProvider, UsageBucket, UsageReport, format_bytes

__all__ = ["StorageUsageReporter"]

logger = logging.getLogger(__name__)

ProviderSource = Callable[[], Iterable[StorageProvider]]


def _bucket(files: int, size: int) -> UsageBucket:
    return UsageBucket(files=files, size=size, size_formatted=format_bytes(size))


class StorageUsageReporter:
    """Aggregate registry sizes globally, per folder and per provider.

    Nothing is cached: every call reads the registry so quota decisions never
    work from a stale total.
    """

    def __init__(
        self,
        registry: FileRegistry,
        providers: Optional[ProviderSource] = None,
        page_size: int = 500,
    ) -> None:
        self._registry = registry
        self._providers = providers
        self._page_size = page_size

    def total_usage(self) -> int:
        return self._registry.total_usage()[1]

    def folder_usage(self, folder: str) -> UsageBucket | None:
        files, size = self._registry.folder_usage(folder)
        if files == 0:
            return None
        return _bucket(files, size)

    def folder_size(self, folder: str) -> int:
        return self._registry.folder_usage(folder)[1]

    def overall_usage(self) -> UsageReport:
        files, size = self._registry.total_usage()
        by_folder = {
            folder: _bucket(count, total)
            for folder, (count, total) in sorted(self._registry.usage_by_folder().items())
        }
        return UsageReport(
            total=_bucket(files, size),
            by_folder=by_folder,
            by_provider=self._usage_by_provider(),
            timestamp=utc_now(),
        )

    def _usage_by_provider(self) -> dict[str, UsageBucket]:
        if self._providers is None:
            return {}
        providers = list(self._providers())
        totals = {provider.name: [0, 0] for provider in providers}
        unassigned = [0, 0]
        for page in self._registry.iter_pages(self._page_size):
            for file in page:
                target = unassigned
                for provider in providers:
                    if provider.owns(file.provider_path):
                        target = totals[provider.name]
                        break
                target[0] += 1
                target[1] += file.size
        if unassigned[0]:
            logger.debug(
                "%d registry rows are not owned by any enabled provider",
                unassigned[0],
                extra={"event": "storage.usage.unassigned", "files": unassigned[0]},
            )
        return {name: _bucket(count, size) for name, (count, size) in totals.items()}
