from __future__ import annotations

import httpx
import pytest

from turnpilot.core.metrics import (
    increment_telemetry_failure,
    observe_turn_latency,
    record_canary_decision,
    record_graph_run,
    record_node_outcome,
)


@pytest.mark.asyncio
async def test_metrics_endpoint_includes_custom_series(monkeypatch: pytest.MonkeyPatch) -> None:
    from turnpilot import main

    monkeypatch.setattr(main.settings.observability, "prometheus_enabled", True, raising=False)

    record_graph_run(route="chat", mode="graph")
    record_node_outcome(provider="Memory", status="ok", latency=0.12)
    record_canary_decision(route="chat", reason="out_of_rollout_sample")
    increment_telemetry_failure(kind="budget")
    observe_turn_latency(route="chat", latency=1.5)

    transport = httpx.ASGITransport(app=main.app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/metrics")
    finally:
        await transport.aclose()

    assert response.status_code == 200
    assert response.headers.get("content-type", "").startswith("text/plain")

    body = response.text
    assert 'turnpilot_graph_runs_total{route="chat",mode="graph"}' in body
    assert "turnpilot_graph_node_latency_seconds_bucket" in body
    assert 'reason="out_of_rollout_sample"' in body
    assert 'turnpilot_telemetry_failures_total{kind="budget"}' in body
    assert "turnpilot_turn_latency_seconds_count" in body


@pytest.mark.asyncio
async def test_metrics_endpoint_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    from turnpilot import main

    monkeypatch.setattr(main.settings.observability, "prometheus_enabled", False, raising=False)

    transport = httpx.ASGITransport(app=main.app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/metrics")
    finally:
        await transport.aclose()

    assert response.status_code == 404
