"""Unit tests for metrics collectors."""

from prometheus_client import CollectorRegistry

from tidycode_ai.metrics import (
    CallEvent,
    LoggingMetricsCollector,
    PrometheusMetricsCollector,
)


def test_logging_metrics_collector_logs():
    logs = {}

    class _Logger:
        def info(self, name, extra=None):
            logs["name"] = name
            logs["extra"] = extra

    collector = LoggingMetricsCollector(logger=_Logger())
    collector.record(
        CallEvent(
            provider="openai",
            model="gpt-4o",
            operation="complete",
            status="success",
            duration_ms=12.5,
        )
    )

    assert logs["name"] == "call_metrics"
    assert logs["extra"]["metrics"]["status"] == "success"
    assert logs["extra"]["metrics"]["model"] == "gpt-4o"


def test_prometheus_metrics_collector_records_values():
    registry = CollectorRegistry()
    collector = PrometheusMetricsCollector(registry=registry)

    collector.record(
        CallEvent(
            provider="claude",
            model="claude-3-5-sonnet-20241022",
            operation="stream_chat",
            status="success",
            duration_ms=100.0,
            chunks=12,
        )
    )
    collector.record(
        CallEvent(
            provider="groq",
            model=None,
            operation="complete",
            status="error",
            duration_ms=200.0,
            retryable=True,
            error_code="rate_limited",
        )
    )

    success_total = registry.get_sample_value(
        "tidyai_calls_total",
        labels={"provider": "claude", "operation": "stream_chat", "status": "success", "error_code": "none"},
    )
    assert success_total == 1.0

    error_total = registry.get_sample_value(
        "tidyai_calls_total",
        labels={"provider": "groq", "operation": "complete", "status": "error", "error_code": "rate_limited"},
    )
    assert error_total == 1.0

    duration_sum = registry.get_sample_value(
        "tidyai_call_duration_seconds_sum",
        labels={"provider": "claude", "operation": "stream_chat", "status": "success"},
    )
    assert duration_sum == 0.1

    chunks_sum = registry.get_sample_value("tidyai_stream_chunks_sum", labels={"provider": "claude"})
    assert chunks_sum == 12.0
    assert registry.get_sample_value("tidyai_stream_chunks_count", labels={"provider": "groq"}) is None
