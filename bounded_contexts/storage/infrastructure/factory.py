"""Provider construction and per-configuration caching."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, assert_never

from ..domain import (
    AzureBlobProviderConfig,
    LocalProviderConfig,
    ProviderConfig,
    S3ProviderConfig,
    StorageConfigurationError,
    StorageProvider,
)
from .azure_blob import AzureBlobStorageProvider
from .config_loader import StorageConfigHolder
from .local import LocalStorageProvider
from .s3 import S3StorageProvider

__all__ = ["ProviderFactory", "ProviderPool"]

logger = logging.getLogger(__name__)


class ProviderFactory:
    """Create provider adapters from their configuration variant."""

    def create(self, configuration: ProviderConfig) -> StorageProvider:
        provider: StorageProvider
        match configuration:
            case LocalProviderConfig():
                provider = LocalStorageProvider(configuration)
            case S3ProviderConfig():
                provider = S3StorageProvider(configuration)
            case AzureBlobProviderConfig():
                provider = AzureBlobStorageProvider(configuration)
            case _:
                assert_never(configuration)
        logger.debug(
            "Created %s provider '%s'",
            configuration.kind.value,
            configuration.name,
            extra={"event": "storage.provider.created", "provider": configuration.name},
        )
        return provider


class ProviderPool:
    """Lazily built providers for the holder's current configuration.

    Cached adapters are discarded whenever the holder's version changes, so a
    reload that edits a provider's settings takes effect on the next lookup.
    Tests pin prepared adapters with :meth:`set`.
    """

    def __init__(self, holder: StorageConfigHolder, factory: Optional[ProviderFactory] = None) -> None:
        self._holder = holder
        self._factory = factory or ProviderFactory()
        self._providers: Dict[str, StorageProvider] = {}
        _, self._version = holder.snapshot()
        self._lock = threading.Lock()

    def get(self, name: str) -> StorageProvider:
        # Config and version must come from the same reload.
        config, version = self._holder.snapshot()
        configuration = config.provider(name)
        if configuration is None:
            raise StorageConfigurationError(f"Unknown storage provider '{name}'", provider=name)
        if not configuration.enabled:
            raise StorageConfigurationError(f"Storage provider '{name}' is disabled", provider=name)
        with self._lock:
            if version != self._version:
                self._providers.clear()
                self._version = version
            provider = self._providers.get(name)
            if provider is None:
                provider = self._factory.create(configuration)
                self._providers[name] = provider
            return provider

    def active(self) -> StorageProvider:
        return self.get(self._holder.current.active_provider)

    def enabled_names(self) -> list[str]:
        return self._holder.current.enabled_providers

    def set(self, name: str, provider: StorageProvider) -> None:
        """Pin an already built provider instance under *name*."""

        with self._lock:
            self._providers[name] = provider
