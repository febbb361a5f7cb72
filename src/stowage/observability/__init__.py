"""Observability module for Stowage.

Provides structured logging and metrics:
- JSON structured logging with correlation IDs
- Prometheus metrics for uploads, deletions and backend failures
"""

from stowage.observability.logging import (
    LogContext,
    configure_logging,
    correlation_id_var,
    request_id_var,
)
from stowage.observability.metrics import MetricsRegistry

__all__ = [
    # Logging
    "configure_logging",
    "LogContext",
    "request_id_var",
    "correlation_id_var",
    # Metrics
    "MetricsRegistry",
]
