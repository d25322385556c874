"""Centralised application settings abstraction.

This module exposes :class:`ApplicationSettings` which consolidates all
configuration lookups for the storage engine.  The Flask application config
takes precedence, then the process environment (or any mapping provided),
then the defaults declared on the properties below.

The global :data:`settings` instance should be used for production code, while
tests can instantiate their own :class:`ApplicationSettings` with a dedicated
mapping to validate behaviour in isolation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, Mapping, Optional, cast

from flask import current_app, has_app_context

if TYPE_CHECKING:  # pragma: no cover
    from flask import Flask


@dataclass(frozen=True)
class _EnvironmentFacade:
    """Thin wrapper that provides ``Mapping`` compatible access to env vars."""

    source: Mapping[str, str]

    @classmethod
    def from_environ(cls, env: Optional[Mapping[str, str]] = None) -> "_EnvironmentFacade":
        return cls(source=os.environ if env is None else env)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.source.get(key, default)


class ApplicationSettings:
    """Domain level representation of configuration values.

    The class favours explicit properties instead of generic ``get`` access so
    that the rest of the application operates on intent-revealing names.
    """

    _LEGACY_KEYS: ClassVar[dict[str, tuple[str, ...]]] = {
        "STORAGE_CONFIG_PATH": ("STORAGE_CONFIG",),
        "STORAGE_BASE_PATH": ("STORAGE_DATA_DIR",),
    }

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        self._env = _EnvironmentFacade.from_environ(env)

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------
    def _get(self, key: str, default: Optional[str] = None):
        app_config = None
        if has_app_context():
            app = cast("Flask", current_app)
            app_config = app.config
            if key in app_config:
                return app_config.get(key)

        value = self._env.get(key)
        if value is not None:
            return value

        for legacy in self._LEGACY_KEYS.get(key, ()):
            if app_config and legacy in app_config:
                return app_config.get(legacy)
            legacy_value = self._env.get(legacy)
            if legacy_value is not None:
                return legacy_value

        return default

    def get(self, key: str, default=None):
        """Return the configured value for *key* or *default* if missing."""

        value = self._get(key)
        return default if value is None else value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return bool(value)
        if isinstance(value, str):
            normalised = value.strip().lower()
            if normalised in {"1", "true", "yes", "on"}:
                return True
            if normalised in {"0", "false", "no", "off"}:
                return False
        return default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._get(key)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def get_path(self, key: str, default: Optional[Path | str] = None) -> Optional[Path]:
        value = self._get(key)
        if value is not None and str(value):
            return Path(str(value))
        if default is None:
            return None
        return Path(str(default))

    def _optional_str(self, key: str) -> Optional[str]:
        value = self._get(key)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    # ------------------------------------------------------------------
    # Generic flags
    # ------------------------------------------------------------------
    @property
    def testing(self) -> bool:
        return self.get_bool("TESTING")

    @property
    def log_level(self) -> str:
        return str(self.get("STORAGE_LOG_LEVEL", "INFO")).upper()

    # ------------------------------------------------------------------
    # Storage configuration
    # ------------------------------------------------------------------
    @property
    def storage_base_path(self) -> Path:
        """Directory holding ``storage.yml`` and the default local root."""

        return cast(Path, self.get_path("STORAGE_BASE_PATH", ".system-data"))

    @property
    def storage_config_path(self) -> Path:
        """Explicit configuration file, else ``<base>/storage.yml``."""

        configured = self.get_path("STORAGE_CONFIG_PATH")
        if configured is not None:
            return configured
        return self.storage_base_path / "storage.yml"

    @property
    def storage_active_provider(self) -> Optional[str]:
        return self._optional_str("STORAGE_ACTIVE_PROVIDER")

    @property
    def storage_global_quota(self) -> Optional[str]:
        """Raw global quota override (``"10GB"``); parsed by the loader."""

        return self._optional_str("STORAGE_GLOBAL_QUOTA")

    @property
    def storage_quota_enforcement(self) -> Optional[bool]:
        if self._get("STORAGE_QUOTA_ENFORCEMENT") is None:
            return None
        return self.get_bool("STORAGE_QUOTA_ENFORCEMENT", True)

    @property
    def storage_registry_page_size(self) -> int:
        return max(1, self.get_int("STORAGE_REGISTRY_PAGE_SIZE", 500))

    # ------------------------------------------------------------------
    # Database configuration
    # ------------------------------------------------------------------
    @property
    def sqlalchemy_database_uri(self) -> Optional[str]:
        value = self._get("SQLALCHEMY_DATABASE_URI")
        return str(value) if value is not None else None


settings = ApplicationSettings()

__all__ = ["ApplicationSettings", "settings"]
