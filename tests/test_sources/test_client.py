from __future__ import annotations

from unittest.mock import patch, AsyncMock

import pytest
import respx
import httpx

from ziproute.errors import ErrorCode, SourceError
from ziproute.sources.breaker import BreakerState, CircuitBreaker
from ziproute.sources.client import SourceConfig, VerificationSource, build_sources

URL = "https://ercot.test/territory/75201"


def _source(http, **overrides) -> VerificationSource:
    config = SourceConfig(
        id="ercot",
        base_url="https://ercot.test/",
        base_delay_s=0,
        requests_per_second=0,
        **overrides,
    )
    return VerificationSource(config, http)


class TestVerify:
    @pytest.mark.asyncio
    @respx.mock
    async def test_parses_verdict(self):
        respx.get(URL).mock(return_value=httpx.Response(200, json={
            "city": "Dallas",
            "county": "Dallas",
            "territory": {"id": "oncor", "name": "Oncor"},
            "deregulated": True,
            "confidence": 97,
        }))
        async with httpx.AsyncClient() as http:
            verdict = await _source(http).verify("75201")

        assert verdict.source_id == "ercot"
        assert verdict.city_name == "Dallas"
        assert verdict.territory_id == "oncor"
        assert verdict.has_territory
        assert verdict.confidence == 97

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_server_errors(self):
        route = respx.get(URL).mock(side_effect=[
            httpx.Response(502),
            httpx.ConnectError("reset"),
            httpx.Response(200, json={"city": "Dallas", "deregulated": True}),
        ])
        async with httpx.AsyncClient() as http:
            verdict = await _source(http, max_retries=2).verify("75201")

        assert route.call_count == 3
        assert verdict.deregulated is True
        assert not verdict.has_territory

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_not_retried(self):
        route = respx.get(URL).mock(return_value=httpx.Response(400))
        async with httpx.AsyncClient() as http:
            with pytest.raises(SourceError):
                await _source(http, max_retries=3).verify("75201")
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_not_found(self):
        respx.get(URL).mock(return_value=httpx.Response(404))
        async with httpx.AsyncClient() as http:
            source = _source(http)
            with pytest.raises(SourceError) as exc:
                await source.verify("75201")
        assert exc.value.code == ErrorCode.NOT_FOUND
        assert source.breaker.state is BreakerState.CLOSED

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_honours_retry_after(self):
        respx.get(URL).mock(side_effect=[
            httpx.Response(429, headers={"Retry-After": "2"}),
            httpx.Response(200, json={"city": "Dallas"}),
        ])
        with patch("ziproute.sources.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
            async with httpx.AsyncClient() as http:
                await _source(http, max_retries=1).verify("75201")
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    @respx.mock
    async def test_breaker_opens_after_threshold(self):
        route = respx.get(URL).mock(return_value=httpx.Response(500))
        async with httpx.AsyncClient() as http:
            source = _source(http, max_retries=0, failure_threshold=2)
            for _ in range(2):
                with pytest.raises(SourceError):
                    await source.verify("75201")
            assert source.breaker.state is BreakerState.OPEN

            with pytest.raises(SourceError):
                await source.verify("75201")
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping(self):
        respx.get("https://ercot.test/health").mock(return_value=httpx.Response(200))
        async with httpx.AsyncClient() as http:
            assert await _source(http).ping()

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping_unreachable(self):
        respx.get("https://ercot.test/health").mock(side_effect=httpx.ConnectError("down"))
        async with httpx.AsyncClient() as http:
            assert not await _source(http).ping()


class TestCircuitBreaker:
    def test_half_open_after_timeout(self):
        now = [0.0]
        breaker = CircuitBreaker("x", failure_threshold=1, recovery_timeout_s=60, clock=lambda: now[0])
        breaker.record_failure()
        assert not breaker.allow()

        now[0] = 61.0
        assert breaker.state is BreakerState.HALF_OPEN
        assert breaker.allow()

        breaker.record_failure()
        assert breaker.state is BreakerState.OPEN

        now[0] = 130.0
        breaker.record_success()
        assert breaker.state is BreakerState.CLOSED


def test_build_sources_skips_disabled():
    config = {"sources": [
        {"id": "a", "base_url": "https://a.test", "enabled": True},
        {"id": "b", "base_url": "https://b.test", "enabled": False},
    ]}
    sources = build_sources(config, http=None)
    assert [s.id for s in sources] == ["a"]
