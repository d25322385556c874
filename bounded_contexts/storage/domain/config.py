"""Storage configuration value objects.

Provider settings are modelled as one frozen dataclass per backend kind.  The
mandatory fields of each kind are checked in ``__post_init__`` so that an
incomplete configuration fails when it is loaded rather than on first use.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import ClassVar, Mapping, Union

from .errors import StorageConfigurationError
from .types import FolderAccess, ProviderKind

__all__ = [
    "LocalProviderConfig",
    "S3ProviderConfig",
    "AzureBlobProviderConfig",
    "ProviderConfig",
    "FolderConfiguration",
    "GlobalStorageSettings",
    "StorageConfig",
]


def _normalise_prefix(prefix: str) -> str:
    cleaned = prefix.strip().strip("/")
    return f"{cleaned}/" if cleaned else ""


def _require_positive_timeout(name: str, timeout: float) -> None:
    if timeout <= 0:
        raise StorageConfigurationError(
            f"Provider '{name}': timeout must be positive", provider=name, field="timeout"
        )


@dataclass(frozen=True, slots=True)
class LocalProviderConfig:
    """Local filesystem provider rooted at ``path``."""

    kind: ClassVar[ProviderKind] = ProviderKind.LOCAL

    name: str
    path: str
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.name:
            raise StorageConfigurationError("Provider name must not be empty")
        if not self.path:
            raise StorageConfigurationError(
                f"Local provider '{self.name}' requires 'path'", provider=self.name, missing=["path"]
            )


@dataclass(frozen=True, slots=True)
class S3ProviderConfig:
    """S3 compatible object store (AWS, MinIO, ...)."""

    kind: ClassVar[ProviderKind] = ProviderKind.S3

    name: str
    bucket: str
    region: str | None = None
    endpoint: str | None = None
    prefix: str = ""
    access_key: str | None = None
    secret_key: str | None = None
    timeout: float = 30.0
    page_size: int = 1000
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.name:
            raise StorageConfigurationError("Provider name must not be empty")
        if not self.bucket:
            raise StorageConfigurationError(
                f"S3 provider '{self.name}' requires 'bucket'", provider=self.name, missing=["bucket"]
            )
        if bool(self.access_key) != bool(self.secret_key):
            raise StorageConfigurationError(
                f"S3 provider '{self.name}' requires both access_key and secret_key or neither",
                provider=self.name,
            )
        _require_positive_timeout(self.name, self.timeout)
        if not 0 < self.page_size <= 1000:
            raise StorageConfigurationError(
                f"S3 provider '{self.name}': page_size must be between 1 and 1000", provider=self.name
            )
        object.__setattr__(self, "prefix", _normalise_prefix(self.prefix))


@dataclass(frozen=True, slots=True)
class AzureBlobProviderConfig:
    """Azure Blob Storage container."""

    kind: ClassVar[ProviderKind] = ProviderKind.AZURE_BLOB

    name: str
    container_name: str
    account_name: str | None = None
    account_key: str | None = None
    connection_string: str | None = None
    prefix: str = ""
    timeout: float = 30.0
    page_size: int = 1000
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.name:
            raise StorageConfigurationError("Provider name must not be empty")
        if not self.container_name:
            raise StorageConfigurationError(
                f"Azure provider '{self.name}' requires 'container_name'",
                provider=self.name,
                missing=["container_name"],
            )
        if not self.connection_string and not (self.account_name and self.account_key):
            raise StorageConfigurationError(
                f"Azure provider '{self.name}' requires connection_string or account_name+account_key",
                provider=self.name,
                missing=["connection_string"],
            )
        _require_positive_timeout(self.name, self.timeout)
        if self.page_size <= 0:
            raise StorageConfigurationError(
                f"Azure provider '{self.name}': page_size must be positive", provider=self.name
            )
        object.__setattr__(self, "prefix", _normalise_prefix(self.prefix))


ProviderConfig = Union[LocalProviderConfig, S3ProviderConfig, AzureBlobProviderConfig]


@dataclass(frozen=True, slots=True)
class FolderConfiguration:
    """Logical folder that uploads are routed into."""

    name: str
    path: str
    access: FolderAccess = FolderAccess.PUBLIC
    allowed_types: frozenset[str] = frozenset({"*"})
    max_size: int = 10 * 1024 * 1024
    quota: int = 0
    description: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise StorageConfigurationError("Folder name must not be empty")
        subpath = PurePosixPath(self.path or self.name)
        if subpath.is_absolute() or ".." in subpath.parts:
            raise StorageConfigurationError(
                f"Folder '{self.name}': path must be relative", folder=self.name, field="path"
            )
        if self.max_size < 0 or self.quota < 0:
            raise StorageConfigurationError(
                f"Folder '{self.name}': sizes must be non-negative", folder=self.name
            )
        object.__setattr__(self, "path", str(subpath))
        object.__setattr__(
            self,
            "allowed_types",
            frozenset(ext.lower().lstrip(".") for ext in self.allowed_types),
        )

    def allows_extension(self, extension: str) -> bool:
        return "*" in self.allowed_types or extension.lower().lstrip(".") in self.allowed_types


@dataclass(frozen=True, slots=True)
class GlobalStorageSettings:
    """Settings that apply across providers and folders."""

    global_quota: int = 0
    quota_enforcement: bool = True
    metrics_window: int = 1000

    def __post_init__(self) -> None:
        if self.global_quota < 0:
            raise StorageConfigurationError("global_quota must be non-negative", field="global_quota")
        if self.metrics_window <= 0:
            raise StorageConfigurationError("metrics_window must be positive", field="metrics_window")


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Complete storage configuration supplied at start-up (and on reload)."""

    providers: Mapping[str, ProviderConfig]
    folders: Mapping[str, FolderConfiguration]
    active_provider: str
    failover_providers: tuple[str, ...] = ()
    settings: GlobalStorageSettings = field(default_factory=GlobalStorageSettings)

    def __post_init__(self) -> None:
        if not self.providers:
            raise StorageConfigurationError("At least one provider must be configured")
        for key, provider in self.providers.items():
            if key != provider.name:
                raise StorageConfigurationError(
                    f"Provider key '{key}' does not match provider name '{provider.name}'",
                    provider=key,
                )
        active = self.providers.get(self.active_provider)
        if active is None:
            raise StorageConfigurationError(
                f"Active provider '{self.active_provider}' is not configured",
                provider=self.active_provider,
            )
        if not active.enabled:
            raise StorageConfigurationError(
                f"Active provider '{self.active_provider}' is disabled", provider=self.active_provider
            )
        unknown = [name for name in self.failover_providers if name not in self.providers]
        if unknown:
            raise StorageConfigurationError(
                f"Unknown failover providers: {', '.join(unknown)}", missing=unknown
            )
        for key, folder in self.folders.items():
            if key != folder.name:
                raise StorageConfigurationError(
                    f"Folder key '{key}' does not match folder name '{folder.name}'", folder=key
                )

    def folder(self, name: str) -> FolderConfiguration | None:
        return self.folders.get(name)

    def provider(self, name: str) -> ProviderConfig | None:
        return self.providers.get(name)

    @property
    def enabled_providers(self) -> list[str]:
        return [name for name, provider in self.providers.items() if provider.enabled]
