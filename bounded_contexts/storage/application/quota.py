"""Quota admission for uploads.

Usage is recomputed from the registry on every check.  Two uploads racing
through :meth:`QuotaManager.check_quota` can both be admitted and together
overshoot a limit; enforcement is soft and no reservation is taken.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Union

from ..domain import QuotaExceededError, QuotaStatus, StorageConfig, format_bytes
from .usage import StorageUsageReporter

__all__ = ["QuotaConfig", "QuotaManager"]

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"


@dataclass(frozen=True, slots=True)
class QuotaConfig:
    """Byte limits per scope; ``0`` means unlimited."""

    enabled: bool = True
    global_limit: int = 0
    folders: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_storage_config(cls, config: StorageConfig) -> "QuotaConfig":
        return cls(
            enabled=config.settings.quota_enforcement,
            global_limit=config.settings.global_quota,
            folders={name: folder.quota for name, folder in config.folders.items()},
        )


QuotaConfigSource = Union[QuotaConfig, Callable[[], QuotaConfig]]


def _status(scope: str, limit: int, used: int) -> QuotaStatus:
    available = max(0, limit - used)
    return QuotaStatus(
        scope=scope,
        limit=limit,
        used=used,
        available=available,
        percentage=round(used / limit * 100, 2) if limit > 0 else 0.0,
        limit_formatted=format_bytes(limit),
        used_formatted=format_bytes(used),
        available_formatted=format_bytes(available),
    )


class QuotaManager:
    def __init__(self, reporter: StorageUsageReporter, config: Optional[QuotaConfigSource] = None) -> None:
        self._reporter = reporter
        self._source: QuotaConfigSource = config if config is not None else QuotaConfig()

    @property
    def config(self) -> QuotaConfig:
        source = self._source
        return source() if callable(source) else source

    def update_config(self, config: QuotaConfigSource) -> None:
        """Replace the limits; the next check uses them."""

        self._source = config
        logger.info("Quota configuration updated", extra={"event": "storage.quota.config_updated"})

    def is_enabled(self) -> bool:
        return self.config.enabled

    def check_quota(self, folder: str, file_size: int) -> None:
        """Admit an upload of *file_size* bytes into *folder* or raise.

        The global limit is checked before the folder limit.

        Raises:
            QuotaExceededError: with ``used``, ``limit`` and ``available``
                (never negative) for the scope that rejected the upload.
        """

        config = self.config
        if not config.enabled:
            return

        if config.global_limit > 0:
            used = self._reporter.total_usage()
            if used + file_size > config.global_limit:
                self._reject(GLOBAL_SCOPE, used, config.global_limit, folder, file_size)

        folder_limit = config.folders.get(folder, 0)
        if folder_limit > 0:
            used = self._reporter.folder_size(folder)
            if used + file_size > folder_limit:
                self._reject(folder, used, folder_limit, folder, file_size)

    def _reject(self, scope: str, used: int, limit: int, folder: str, file_size: int) -> None:
        available = max(0, limit - used)
        logger.warning(
            "Quota exceeded for %s: used=%d limit=%d incoming=%d",
            scope,
            used,
            limit,
            file_size,
            extra={
                "event": "storage.quota.rejected",
                "scope": scope,
                "folder": folder,
                "used": used,
                "limit": limit,
                "file_size": file_size,
            },
        )
        raise QuotaExceededError(
            used=used,
            limit=limit,
            available=available,
            scope=scope,
            folder=folder,
            file_size=file_size,
        )

    def get_folder_quota(self, folder: str) -> QuotaStatus | None:
        limit = self.config.folders.get(folder, 0)
        if limit <= 0:
            return None
        return _status(folder, limit, self._reporter.folder_size(folder))

    def get_global_quota(self) -> QuotaStatus | None:
        limit = self.config.global_limit
        if limit <= 0:
            return None
        return _status(GLOBAL_SCOPE, limit, self._reporter.total_usage())
