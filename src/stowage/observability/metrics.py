"""Prometheus metrics for Stowage.

Provides metrics collection and exposure:
- Upload and deletion counts per storage service
- Backend errors by service and operation
- Variant cache hits and misses
- Storage operation latency

Usage:
    from stowage.observability.metrics import MetricsRegistry

    metrics = MetricsRegistry(enabled=settings.enable_metrics)
    metrics.record_upload("local", 1024)
    payload = metrics.generate_latest()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from stowage.errors import BackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NoOpMetric:
    """No-op metric for when metrics are disabled."""

    def labels(self, **kwargs: Any) -> "NoOpMetric":
        """Return self for chaining."""
        return self

    def inc(self, amount: float = 1) -> None:
        pass

    def observe(self, value: float) -> None:
        pass


class MetricsRegistry:
    """Registry for Stowage's Prometheus metrics.

    Each instance owns its own ``CollectorRegistry`` so several runtimes
    (and tests) can coexist in one process.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.registry: CollectorRegistry | None = None

        if not enabled:
            logger.info("Metrics are disabled")
            noop = NoOpMetric()
            self.uploads_total: Any = noop
            self.upload_bytes_total: Any = noop
            self.deletions_total: Any = noop
            self.backend_errors_total: Any = noop
            self.variant_hits_total: Any = noop
            self.variant_misses_total: Any = noop
            self.operation_duration_seconds: Any = noop
            return

        self.registry = CollectorRegistry()

        self.uploads_total = Counter(
            "stowage_uploads_total",
            "Blobs uploaded",
            ["service"],
            registry=self.registry,
        )
        self.upload_bytes_total = Counter(
            "stowage_upload_bytes_total",
            "Bytes uploaded",
            ["service"],
            registry=self.registry,
        )
        self.deletions_total = Counter(
            "stowage_blob_deletions_total",
            "Blobs deleted (metadata and bytes)",
            ["service"],
            registry=self.registry,
        )
        self.backend_errors_total = Counter(
            "stowage_backend_errors_total",
            "Storage backend failures",
            ["service", "operation"],
            registry=self.registry,
        )
        self.variant_hits_total = Counter(
            "stowage_variant_cache_hits_total",
            "Variant requests served from an existing derived object",
            registry=self.registry,
        )
        self.variant_misses_total = Counter(
            "stowage_variant_cache_misses_total",
            "Variant requests that derived a new object",
            registry=self.registry,
        )
        self.operation_duration_seconds = Histogram(
            "stowage_storage_operation_duration_seconds",
            "Storage backend operation latency in seconds",
            ["service", "operation"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self.registry,
        )

    def record_upload(self, service: str, byte_size: int) -> None:
        self.uploads_total.labels(service=service).inc()
        self.upload_bytes_total.labels(service=service).inc(byte_size)

    def record_deletion(self, service: str) -> None:
        self.deletions_total.labels(service=service).inc()

    def record_backend_error(self, service: str, operation: str) -> None:
        self.backend_errors_total.labels(service=service, operation=operation).inc()

    def record_variant_hit(self) -> None:
        self.variant_hits_total.inc()

    def record_variant_miss(self) -> None:
        self.variant_misses_total.inc()

    @contextmanager
    def time_operation(self, service: str, operation: str) -> Iterator[None]:
        """Observe the duration of a backend call, failures included."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.operation_duration_seconds.labels(service=service, operation=operation).observe(
                time.perf_counter() - start_time
            )

    async def track(self, service: str, operation: str, call: Awaitable[T]) -> T:
        """Await a backend call, timing it and counting backend failures."""
        with self.time_operation(service, operation):
            try:
                return await call
            except BackendError:
                self.record_backend_error(service, operation)
                raise

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Return the current value of one sample, or None when unavailable."""
        if self.registry is None:
            return None
        return self.registry.get_sample_value(name, labels or {})

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self.registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self.registry)
