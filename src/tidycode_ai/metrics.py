"""Metrics collection primitives for provider calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


@dataclass
class CallEvent:
    """Structured metrics payload for one completion or chat call."""

    provider: str
    model: Optional[str]
    operation: str
    status: str
    duration_ms: float
    chunks: int = 0
    retryable: Optional[bool] = None
    error_code: Optional[str] = None


class MetricsCollector(Protocol):
    """Protocol for collecting call events."""

    def record(self, event: CallEvent) -> None:
        """Persist or emit the call event."""


class LoggingMetricsCollector(MetricsCollector):
    """Default metrics collector that logs structured events."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("tidycode_ai.metrics")

    def record(self, event: CallEvent) -> None:
        payload = {
            "provider": event.provider,
            "model": event.model,
            "operation": event.operation,
            "status": event.status,
            "duration_ms": round(event.duration_ms, 3),
            "chunks": event.chunks,
            "retryable": event.retryable,
            "error_code": event.error_code,
        }
        self._logger.info("call_metrics", extra={"metrics": payload})


class PrometheusMetricsCollector(MetricsCollector):
    """Metrics collector backed by Prometheus client library."""

    def __init__(
        self,
        *,
        port: Optional[int] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._registry = registry or CollectorRegistry()
        self._calls = Counter(
            "tidyai_calls_total",
            "Total provider calls",
            ["provider", "operation", "status", "error_code"],
            registry=self._registry,
        )
        self._duration = Histogram(
            "tidyai_call_duration_seconds",
            "Provider call duration",
            ["provider", "operation", "status"],
            registry=self._registry,
        )
        self._chunks = Histogram(
            "tidyai_stream_chunks",
            "Deltas delivered per streaming call",
            ["provider"],
            registry=self._registry,
            buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
        )
        if port is not None:
            start_http_server(port, registry=self._registry)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record(self, event: CallEvent) -> None:
        error_code = event.error_code or "none"
        self._calls.labels(
            provider=event.provider,
            operation=event.operation,
            status=event.status,
            error_code=error_code,
        ).inc()
        self._duration.labels(
            provider=event.provider,
            operation=event.operation,
            status=event.status,
        ).observe(max(event.duration_ms / 1000.0, 0.0))
        if event.operation.startswith("stream"):
            self._chunks.labels(provider=event.provider).observe(max(float(event.chunks), 0.0))
