"""Wiring of the storage services around one configuration holder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..domain import FileRegistry, StorageConfig
from ..infrastructure import ProviderFactory, ProviderPool, StorageConfigHolder
from .metrics import StorageMetricsCollector
from .quota import QuotaConfig, QuotaManager
from .reconciler import OrphanedFileReconciler
from .services import StorageApplicationService
from .usage import StorageUsageReporter

__all__ = ["StorageServices", "build_storage_services"]


@dataclass(frozen=True)
class StorageServices:
    """Single instances shared by every caller of the storage engine."""

    config: StorageConfigHolder
    providers: ProviderPool
    registry: FileRegistry
    metrics: StorageMetricsCollector
    usage: StorageUsageReporter
    quota: QuotaManager
    storage: StorageApplicationService
    reconciler: OrphanedFileReconciler


def build_storage_services(
    config: StorageConfig | StorageConfigHolder,
    registry: FileRegistry,
    *,
    factory: Optional[ProviderFactory] = None,
    metrics: Optional[StorageMetricsCollector] = None,
    page_size: int = 500,
) -> StorageServices:
    holder = config if isinstance(config, StorageConfigHolder) else StorageConfigHolder(config)
    providers = ProviderPool(holder, factory)
    metrics = metrics or StorageMetricsCollector(holder.current.settings.metrics_window)

    def enabled_providers():
        return [providers.get(name) for name in providers.enabled_names()]

    usage = StorageUsageReporter(registry, enabled_providers, page_size=page_size)
    quota = QuotaManager(usage, lambda: QuotaConfig.from_storage_config(holder.current))
    storage = StorageApplicationService(holder, providers, registry, quota, metrics)
    reconciler = OrphanedFileReconciler(providers, registry, metrics=metrics, page_size=page_size)
    return StorageServices(
        config=holder,
        providers=providers,
        registry=registry,
        metrics=metrics,
        usage=usage,
        quota=quota,
        storage=storage,
        reconciler=reconciler,
    )
