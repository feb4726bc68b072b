"""Tests for request metrics and health reporting."""
import pytest

from lmproxy.services.gateway.backend import BackendGateway
from lmproxy.services.health import HealthService
from lmproxy.services.metrics import MAX_SAMPLES, MetricsCollector, percentile


# ===== Metrics =====

def test_percentile_nearest_rank():
    values = list(range(1, 101))
    assert percentile(values, 50) == 50
    assert percentile(values, 95) == 95
    assert percentile(values, 99) == 99
    assert percentile([7], 99) == 7
    assert percentile([], 50) == 0


def test_summary_counts():
    metrics = MetricsCollector()
    metrics.record_request("/v1/models", "GET")
    metrics.record_request("/v1/models", "GET")
    metrics.record_request("/v1/chat/completions", "POST")
    metrics.record_success(10.0)
    metrics.record_success(30.0)
    metrics.record_error("server_error")

    summary = metrics.get_summary()

    assert summary["requests"] == {
        "total": 3,
        "successful": 2,
        "failed": 1,
        "by_endpoint": {"GET /v1/models": 2, "POST /v1/chat/completions": 1},
    }
    assert summary["response_time"]["average"] == 20.0
    assert summary["response_time"]["min"] == 10.0
    assert summary["response_time"]["max"] == 30.0
    assert summary["response_time"]["p50"] == 10.0
    assert summary["errors"] == {"total": 1, "by_type": {"server_error": 1}}
    assert summary["uptime"] >= 0
    assert "timestamp" in summary


def test_empty_summary():
    summary = MetricsCollector().get_summary()
    assert summary["response_time"] == {"average": 0, "min": 0, "max": 0, "p50": 0, "p95": 0, "p99": 0}


def test_only_recent_samples_kept():
    metrics = MetricsCollector()
    for i in range(MAX_SAMPLES + 500):
        metrics.record_success(float(i))

    summary = metrics.get_summary()

    assert summary["requests"]["successful"] == MAX_SAMPLES + 500
    assert summary["response_time"]["min"] == 500.0


def test_reset():
    metrics = MetricsCollector()
    metrics.record_request("/models", "GET")
    metrics.record_error("client_error")
    metrics.reset()

    summary = metrics.get_summary()

    assert summary["requests"]["total"] == 0
    assert summary["errors"]["by_type"] == {}


# ===== Health =====

@pytest.mark.asyncio
async def test_health_reflects_gateway_readiness():
    gateway = BackendGateway()
    health = HealthService(gateway, "1.0.0")

    assert health.get_health()["status"] == "unhealthy"
    assert health.get_simple_health()["status"] == "healthy"

    await gateway.initialize()
    report = health.get_health()

    assert report["status"] == "healthy"
    assert report["services"] == {"claude_code_sdk": "up", "anthropic_api": "up"}
    assert report["version"] == "1.0.0"
