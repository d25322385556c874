"""Loading and hot-reloading of :class:`StorageConfig`.

The on-disk format is ``storage.yml``::

    active_provider: local
    failover_providers: [archive]
    providers:
      local:
        type: local
        path: storage
      archive:
        type: s3
        bucket: civic-archive
        region: eu-west-1
        prefix: uploads
        credentials:
          access_key: ...
          secret_key: ...
    global:
      global_quota: 10GB
      quota_enforcement: true
    folders:
      public:
        path: public
        access: public
        allowed_types: [pdf, png]
        max_size: 10MB
        quota: 1GB

A single legacy ``backend:`` block is accepted in place of ``providers`` and
becomes a provider named after its type.  JSON files with the same structure
are read when the file name ends in ``.json``.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import yaml

from core.settings import ApplicationSettings

from ..domain import (
    AzureBlobProviderConfig,
    FolderAccess,
    FolderConfiguration,
    GlobalStorageSettings,
    LocalProviderConfig,
    ProviderConfig,
    ProviderKind,
    S3ProviderConfig,
    StorageConfig,
    StorageConfigurationError,
    parse_size,
)

__all__ = [
    "DEFAULT_FOLDERS",
    "StorageConfigLoader",
    "StorageConfigHolder",
    "default_storage_config",
]

logger = logging.getLogger(__name__)

DEFAULT_FOLDERS: dict[str, dict[str, Any]] = {
    "public": {
        "path": "public",
        "access": "public",
        "allowed_types": ["jpg", "jpeg", "png", "gif", "pdf", "txt", "md"],
        "max_size": "10MB",
        "description": "Public files accessible to everyone",
    },
    "sessions": {
        "path": "sessions",
        "access": "public",
        "allowed_types": ["mp4", "webm", "mp3", "wav", "pdf", "md"],
        "max_size": "100MB",
        "description": "Meeting recordings and session materials",
    },
    "permits": {
        "path": "permits",
        "access": "authenticated",
        "allowed_types": ["pdf", "jpg", "jpeg", "png"],
        "max_size": "5MB",
        "description": "Permit applications and documents",
    },
    "private": {
        "path": "private",
        "access": "private",
        "allowed_types": ["pdf", "doc", "docx", "xls", "xlsx"],
        "max_size": "25MB",
        "description": "Private documents for authorized users only",
    },
}


def _size(value: Any, field: str, **context: Any) -> int:
    try:
        return parse_size(value)
    except ValueError as exc:
        raise StorageConfigurationError(
            f"Invalid size for '{field}': {value!r}", field=field, **context
        ) from exc


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise StorageConfigurationError(f"'{key}' must be a mapping", field=key)
    return value


class StorageConfigLoader:
    """Build :class:`StorageConfig` objects from files or mappings."""

    def __init__(
        self,
        base_path: str | Path | None = None,
        settings: Optional[ApplicationSettings] = None,
    ) -> None:
        self._settings = settings
        if base_path is None:
            base_path = settings.storage_base_path if settings is not None else ".system-data"
        self._base_path = Path(base_path)

    @property
    def base_path(self) -> Path:
        return self._base_path

    def load(self, source: str | Path | Mapping[str, Any] | None = None) -> StorageConfig:
        """Load from *source*, the configured path, or the built-in default.

        Environment overrides (active provider, global quota, enforcement)
        are applied last when settings were supplied.
        """

        if isinstance(source, Mapping):
            data = dict(source)
        else:
            path = Path(source) if source is not None else self._default_path()
            if path is not None and path.exists():
                data = self.read_file(path)
                logger.info(
                    "Storage configuration loaded from %s",
                    path,
                    extra={"event": "storage.config.loaded", "path": str(path)},
                )
            elif source is not None:
                raise StorageConfigurationError(f"Configuration file not found: {path}", path=str(path))
            else:
                logger.info(
                    "No storage configuration file found; using defaults",
                    extra={"event": "storage.config.default"},
                )
                data = self.default_mapping()
        return self.from_mapping(self._apply_overrides(data))

    def _default_path(self) -> Optional[Path]:
        if self._settings is None:
            return None
        return self._settings.storage_config_path

    @staticmethod
    def read_file(path: Path) -> dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageConfigurationError(f"Cannot read {path}: {exc}", path=str(path)) from exc
        try:
            if path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as exc:
            raise StorageConfigurationError(f"Cannot parse {path}: {exc}", path=str(path)) from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StorageConfigurationError(f"{path} must contain a mapping", path=str(path))
        return data

    def default_mapping(self) -> dict[str, Any]:
        return {
            "active_provider": "local",
            "providers": {"local": {"type": "local", "path": "storage"}},
            "folders": {name: dict(folder) for name, folder in DEFAULT_FOLDERS.items()},
        }

    def _apply_overrides(self, data: dict[str, Any]) -> dict[str, Any]:
        if self._settings is None:
            return data
        merged = dict(data)
        active = self._settings.storage_active_provider
        if active:
            merged["active_provider"] = active
        quota = self._settings.storage_global_quota
        enforcement = self._settings.storage_quota_enforcement
        if quota is not None or enforcement is not None:
            global_section = dict(_section(merged, "global"))
            if quota is not None:
                global_section["global_quota"] = quota
            if enforcement is not None:
                global_section["quota_enforcement"] = enforcement
            merged["global"] = global_section
        return merged

    # ------------------------------------------------------------------
    # Mapping -> value objects
    # ------------------------------------------------------------------
    def from_mapping(self, data: Mapping[str, Any]) -> StorageConfig:
        providers_data = _section(data, "providers")
        if not providers_data and data.get("backend"):
            backend = dict(_section(data, "backend"))
            providers_data = {str(backend.get("type", "local")): backend}
        providers: dict[str, ProviderConfig] = {}
        for name, raw in providers_data.items():
            if not isinstance(raw, Mapping):
                raise StorageConfigurationError(f"Provider '{name}' must be a mapping", provider=name)
            providers[str(name)] = self._provider(str(name), raw)
        if not providers:
            raise StorageConfigurationError("At least one provider must be configured")

        folders = {
            str(name): self._folder(str(name), raw)
            for name, raw in _section(data, "folders").items()
        }
        active = data.get("active_provider") or next(iter(providers))
        failover = data.get("failover_providers") or ()
        if isinstance(failover, str):
            failover = (failover,)
        return StorageConfig(
            providers=providers,
            folders=folders,
            active_provider=str(active),
            failover_providers=tuple(str(name) for name in failover),
            settings=self._global(_section(data, "global")),
        )

    def _provider(self, name: str, raw: Mapping[str, Any]) -> ProviderConfig:
        try:
            kind = ProviderKind(str(raw.get("type", "")).strip().lower())
        except ValueError as exc:
            raise StorageConfigurationError(
                f"Provider '{name}' has unsupported type {raw.get('type')!r}", provider=name
            ) from exc
        options: dict[str, Any] = {}
        options.update(raw.get("options") or {})
        options.update(raw.get("credentials") or {})
        builder = self._builders()[kind]
        return builder(name, raw, options)

    def _builders(self) -> dict[ProviderKind, Callable[[str, Mapping[str, Any], dict[str, Any]], ProviderConfig]]:
        return {
            ProviderKind.LOCAL: self._local,
            ProviderKind.S3: self._s3,
            ProviderKind.AZURE_BLOB: self._azure,
        }

    def _local(self, name: str, raw: Mapping[str, Any], options: dict[str, Any]) -> ProviderConfig:
        path = raw.get("path")
        if path:
            path = Path(str(path)).expanduser()
            if not path.is_absolute():
                path = self._base_path / path
        return LocalProviderConfig(
            name=name, path=str(path) if path else "", enabled=bool(raw.get("enabled", True))
        )

    def _s3(self, name: str, raw: Mapping[str, Any], options: dict[str, Any]) -> ProviderConfig:
        return S3ProviderConfig(
            name=name,
            bucket=str(raw.get("bucket") or ""),
            region=raw.get("region"),
            endpoint=raw.get("endpoint"),
            prefix=str(raw.get("prefix") or ""),
            access_key=options.get("access_key") or options.get("accessKeyId"),
            secret_key=options.get("secret_key") or options.get("secretAccessKey"),
            timeout=float(options.get("timeout", raw.get("timeout", 30.0))),
            page_size=int(options.get("page_size", raw.get("page_size", 1000))),
            enabled=bool(raw.get("enabled", True)),
        )

    def _azure(self, name: str, raw: Mapping[str, Any], options: dict[str, Any]) -> ProviderConfig:
        return AzureBlobProviderConfig(
            name=name,
            container_name=str(raw.get("container_name") or ""),
            account_name=raw.get("account_name") or options.get("account_name"),
            account_key=options.get("account_key") or options.get("accountKey"),
            connection_string=options.get("connection_string") or options.get("connectionString"),
            prefix=str(raw.get("prefix") or ""),
            timeout=float(options.get("timeout", raw.get("timeout", 30.0))),
            page_size=int(options.get("page_size", raw.get("page_size", 1000))),
            enabled=bool(raw.get("enabled", True)),
        )

    def _folder(self, name: str, raw: Any) -> FolderConfiguration:
        if not isinstance(raw, Mapping):
            raise StorageConfigurationError(f"Folder '{name}' must be a mapping", folder=name)
        try:
            access = FolderAccess(str(raw.get("access", FolderAccess.PUBLIC.value)))
        except ValueError as exc:
            raise StorageConfigurationError(
                f"Folder '{name}' has unsupported access {raw.get('access')!r}", folder=name
            ) from exc
        allowed = raw.get("allowed_types") or ["*"]
        if isinstance(allowed, str):
            allowed = [part.strip() for part in allowed.split(",") if part.strip()]
        return FolderConfiguration(
            name=name,
            path=str(raw.get("path") or name),
            access=access,
            allowed_types=frozenset(str(ext) for ext in allowed),
            max_size=_size(raw.get("max_size", "10MB"), "max_size", folder=name),
            quota=_size(raw.get("quota", 0), "quota", folder=name),
            description=raw.get("description"),
        )

    def _global(self, raw: Mapping[str, Any]) -> GlobalStorageSettings:
        defaults = GlobalStorageSettings()
        try:
            return GlobalStorageSettings(
                global_quota=_size(raw.get("global_quota", 0), "global_quota"),
                quota_enforcement=bool(raw.get("quota_enforcement", defaults.quota_enforcement)),
                metrics_window=int(raw.get("metrics_window", defaults.metrics_window)),
            )
        except (TypeError, ValueError) as exc:
            raise StorageConfigurationError(f"Invalid global storage settings: {exc}", field="global") from exc


def default_storage_config(base_path: str | Path = ".system-data") -> StorageConfig:
    """Return the built-in configuration: one local provider, four folders."""

    loader = StorageConfigLoader(base_path)
    return loader.from_mapping(loader.default_mapping())


class StorageConfigHolder:
    """Current configuration behind a lock, swapped atomically on reload.

    Readers call :attr:`current` on every operation so that folder rules and
    quota limits apply from the next check after a reload.
    """

    def __init__(
        self,
        config: StorageConfig,
        *,
        loader: Optional[StorageConfigLoader] = None,
        source: str | Path | Mapping[str, Any] | None = None,
    ) -> None:
        self._config = config
        self._loader = loader
        self._source = source
        self._version = 0
        self._lock = threading.Lock()
        self._listeners: list[Callable[[StorageConfig], None]] = []

    @classmethod
    def from_loader(
        cls,
        loader: StorageConfigLoader,
        source: str | Path | Mapping[str, Any] | None = None,
    ) -> "StorageConfigHolder":
        return cls(loader.load(source), loader=loader, source=source)

    @property
    def current(self) -> StorageConfig:
        with self._lock:
            return self._config

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def snapshot(self) -> tuple[StorageConfig, int]:
        """Return the configuration together with the version it was installed as."""

        with self._lock:
            return self._config, self._version

    def subscribe(self, listener: Callable[[StorageConfig], None]) -> None:
        self._listeners.append(listener)

    def replace(self, config: StorageConfig) -> StorageConfig:
        with self._lock:
            self._config = config
            self._version += 1
            version = self._version
        logger.info(
            "Storage configuration replaced (version %d)",
            version,
            extra={"event": "storage.config.replaced", "version": version},
        )
        for listener in list(self._listeners):
            listener(config)
        return config

    def reload(self) -> StorageConfig:
        """Re-read the original source; on failure the current config stays."""

        if self._loader is None:
            raise StorageConfigurationError("Configuration holder has no loader to reload from")
        config = self._loader.load(self._source)
        return self.replace(config)
