"""In-process storage operation metrics.

One :class:`StorageMetricsCollector` is created per application and handed to
every service that reports operations.  All mutation happens under a single
lock.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections import Counter, deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, Iterator, Optional

from core.time import elapsed_ms, monotonic_ms, utc_now

from ..domain import OperationKind, StorageException
from .schemas import MetricsSnapshotSchema

__all__ = [
    "DEFAULT_LATENCY_WINDOW",
    "OperationCounters",
    "ProviderStats",
    "MetricsSnapshot",
    "ProviderSummary",
    "MetricsSummary",
    "OperationTiming",
    "StorageMetricsCollector",
]

logger = logging.getLogger(__name__)

DEFAULT_LATENCY_WINDOW = 1000
TOP_ERRORS = 10


@dataclass(slots=True)
class OperationCounters:
    total: int = 0
    successful: int = 0
    failed: int = 0
    bytes: int = 0


@dataclass(slots=True)
class ProviderStats:
    operations: int = 0
    errors: int = 0
    bytes_transferred: int = 0
    average_latency: float = 0.0


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """Independent copy of the collector state."""

    operations: Dict[str, OperationCounters]
    latency: Dict[str, list[float]]
    errors_by_type: Dict[str, int]
    errors_by_provider: Dict[str, int]
    providers: Dict[str, ProviderStats]
    start_time: datetime
    last_update: datetime


@dataclass(frozen=True, slots=True)
class ProviderSummary:
    provider: str
    operations: int
    error_rate: float
    bytes_transferred: int
    average_latency: float


@dataclass(frozen=True, slots=True)
class MetricsSummary:
    total_operations: int
    success_rate: float
    total_bytes_transferred: int
    average_latencies: Dict[str, float]
    error_count: int
    top_errors: list[tuple[str, int]]
    provider_stats: list[ProviderSummary]


@dataclass(slots=True)
class OperationTiming:
    """Handle yielded by :meth:`StorageMetricsCollector.timed`."""

    bytes: int = 0
    provider: Optional[str] = None


class StorageMetricsCollector:
    def __init__(self, window: int = DEFAULT_LATENCY_WINDOW) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        self._window = window
        self._lock = threading.Lock()
        self._reset_locked()

    @property
    def window(self) -> int:
        return self._window

    def _reset_locked(self) -> None:
        self._operations: Dict[OperationKind, OperationCounters] = {
            kind: OperationCounters() for kind in OperationKind
        }
        self._latency: Dict[OperationKind, Deque[float]] = {
            kind: deque(maxlen=self._window) for kind in OperationKind
        }
        self._errors_by_type: Counter[str] = Counter()
        self._errors_by_provider: Counter[str] = Counter()
        self._providers: Dict[str, ProviderStats] = {}
        self._start_time = utc_now()
        self._last_update = self._start_time

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    def record(
        self,
        kind: OperationKind,
        success: bool,
        latency_ms: float,
        *,
        bytes_transferred: int = 0,
        provider: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        with self._lock:
            counters = self._operations[kind]
            counters.total += 1
            if success:
                counters.successful += 1
                counters.bytes += bytes_transferred
            else:
                counters.failed += 1
                if error_code:
                    self._errors_by_type[error_code] += 1
                    if provider:
                        self._errors_by_provider[provider] += 1
            self._latency[kind].append(latency_ms)

            if provider:
                stats = self._providers.setdefault(provider, ProviderStats())
                stats.operations += 1
                if not success:
                    stats.errors += 1
                stats.bytes_transferred += bytes_transferred
                stats.average_latency = (
                    stats.average_latency * (stats.operations - 1) + latency_ms
                ) / stats.operations
            self._last_update = utc_now()

    def record_upload(self, success: bool, bytes_transferred: int, latency_ms: float,
                      provider: Optional[str] = None, error_code: Optional[str] = None) -> None:
        self.record(OperationKind.UPLOAD, success, latency_ms, bytes_transferred=bytes_transferred,
                    provider=provider, error_code=error_code)

    def record_download(self, success: bool, bytes_transferred: int, latency_ms: float,
                        provider: Optional[str] = None, error_code: Optional[str] = None) -> None:
        self.record(OperationKind.DOWNLOAD, success, latency_ms, bytes_transferred=bytes_transferred,
                    provider=provider, error_code=error_code)

    def record_delete(self, success: bool, latency_ms: float,
                      provider: Optional[str] = None, error_code: Optional[str] = None) -> None:
        self.record(OperationKind.DELETE, success, latency_ms, provider=provider, error_code=error_code)

    def record_list(self, success: bool, latency_ms: float,
                    provider: Optional[str] = None, error_code: Optional[str] = None) -> None:
        self.record(OperationKind.LIST, success, latency_ms, provider=provider, error_code=error_code)

    @contextmanager
    def timed(self, kind: OperationKind, provider: Optional[str] = None) -> Iterator[OperationTiming]:
        """Measure the enclosed block and record its outcome.

        Exceptions are recorded as failures (``StorageException.code`` or the
        exception class name) and re-raised.
        """

        timing = OperationTiming(provider=provider)
        started = monotonic_ms()
        try:
            yield timing
        except Exception as exc:
            code = exc.code if isinstance(exc, StorageException) else type(exc).__name__
            self.record(
                kind,
                False,
                elapsed_ms(started),
                provider=timing.provider,
                error_code=code,
            )
            raise
        self.record(
            kind,
            True,
            elapsed_ms(started),
            bytes_transferred=timing.bytes,
            provider=timing.provider,
        )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------
    def get_metrics(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                operations={kind.value: copy.copy(c) for kind, c in self._operations.items()},
                latency={kind.value: list(samples) for kind, samples in self._latency.items()},
                errors_by_type=dict(self._errors_by_type),
                errors_by_provider=dict(self._errors_by_provider),
                providers={name: copy.copy(stats) for name, stats in self._providers.items()},
                start_time=self._start_time,
                last_update=self._last_update,
            )

    def get_summary(self) -> MetricsSummary:
        with self._lock:
            total = sum(c.total for c in self._operations.values())
            successful = sum(c.successful for c in self._operations.values())
            transferred = (
                self._operations[OperationKind.UPLOAD].bytes
                + self._operations[OperationKind.DOWNLOAD].bytes
            )
            averages = {
                kind.value: (sum(samples) / len(samples) if samples else 0.0)
                for kind, samples in self._latency.items()
            }
            providers = [
                ProviderSummary(
                    provider=name,
                    operations=stats.operations,
                    error_rate=(stats.errors / stats.operations * 100) if stats.operations else 0.0,
                    bytes_transferred=stats.bytes_transferred,
                    average_latency=stats.average_latency,
                )
                for name, stats in self._providers.items()
            ]
            return MetricsSummary(
                total_operations=total,
                success_rate=(successful / total * 100) if total else 0.0,
                total_bytes_transferred=transferred,
                average_latencies=averages,
                error_count=sum(self._errors_by_type.values()),
                top_errors=self._errors_by_type.most_common(TOP_ERRORS),
                provider_stats=providers,
            )

    def reset(self) -> None:
        with self._lock:
            self._reset_locked()
        logger.debug("Storage metrics reset", extra={"event": "storage.metrics.reset"})

    def to_json(self, indent: Optional[int] = 2) -> str:
        return MetricsSnapshotSchema().dumps(self.get_metrics(), indent=indent)
