from __future__ import annotations

from datetime import datetime, timezone

import pytest
import respx
import httpx

from ziproute.models.schemas import AlertType, PerformanceAlert, Severity
from ziproute.notify.analytics import AnalyticsSink
from ziproute.notify.slack import SlackNotifier, _build_slack_blocks

WEBHOOK = "https://hooks.slack.com/test"


def _alert(**overrides) -> PerformanceAlert:
    fields = dict(
        id="abc123",
        key="slow_response:routing",
        type=AlertType.SLOW_RESPONSE,
        component="routing",
        severity=Severity.CRITICAL,
        message="Response took 2500ms (threshold 1000ms)",
        metrics={"response_time_ms": 2500.0},
        timestamp=datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return PerformanceAlert(**fields)


def test_build_slack_blocks():
    blocks = _build_slack_blocks(_alert(occurrences=3), {"CRITICAL": ":red_circle:"})

    assert blocks[0]["type"] == "header"
    assert blocks[0]["text"]["text"] == ":red_circle: CRITICAL - Slow Response"
    assert blocks[1]["type"] == "divider"
    assert "*routing*" in blocks[2]["text"]["text"]

    metrics = next(b for b in blocks if b["type"] == "section" and ":bar_chart:" in b["text"]["text"])
    assert "response_time_ms: 2500" in metrics["text"]["text"]

    context = blocks[-1]["elements"][0]["text"]
    assert "Alert abc123" in context
    assert "2026-03-01 12:30 UTC" in context
    assert "Seen 3x" in context


def test_build_slack_blocks_without_metrics():
    blocks = _build_slack_blocks(_alert(metrics={}))
    assert not any(b["type"] == "section" and ":bar_chart:" in b["text"]["text"] for b in blocks)
    assert ":rotating_light:" in blocks[0]["text"]["text"]


@pytest.mark.asyncio
@respx.mock
async def test_notify_alert_posts():
    route = respx.post(WEBHOOK).mock(return_value=httpx.Response(200, text="ok"))
    async with httpx.AsyncClient() as http:
        assert await SlackNotifier(WEBHOOK, http).notify_alert(_alert())
    assert route.called


@pytest.mark.asyncio
@respx.mock
async def test_notify_alert_failure_is_reported():
    respx.post(WEBHOOK).mock(return_value=httpx.Response(500, text="nope"))
    async with httpx.AsyncClient() as http:
        assert not await SlackNotifier(WEBHOOK, http).notify_alert(_alert())


@pytest.mark.asyncio
async def test_notify_without_webhook():
    assert not await SlackNotifier("", http=None).notify_alert(_alert())


@pytest.mark.asyncio
@respx.mock
async def test_analytics_fire_and_forget():
    route = respx.post("https://analytics.test/events").mock(return_value=httpx.Response(202))
    async with httpx.AsyncClient() as http:
        sink = AnalyticsSink("https://analytics.test/events", http)
        sink.track("zip_lookup", postal_code="75201", success=True)
        await sink.drain()
    assert route.call_count == 1
    body = route.calls[0].request.content
    assert b"zip_lookup" in body and b"75201" in body


@pytest.mark.asyncio
@respx.mock
async def test_analytics_errors_are_swallowed():
    respx.post("https://analytics.test/events").mock(side_effect=httpx.ConnectError("down"))
    async with httpx.AsyncClient() as http:
        sink = AnalyticsSink("https://analytics.test/events", http)
        sink.track("zip_lookup")
        await sink.drain()


def test_analytics_disabled_without_url():
    sink = AnalyticsSink("", http=None)
    sink.track("zip_lookup")
    assert not sink.enabled
