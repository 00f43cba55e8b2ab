from __future__ import annotations

import asyncio

from ai_request_router.health import HealthMonitor
from ai_request_router.models import ProviderProfile, RouteRequest
from ai_request_router.providers.base import CallableProvider
from ai_request_router.router import AIRequestRouter
from tests.provider_test_utils import ScriptedProvider


def test_check_all_flips_availability() -> None:
    healthy = ScriptedProvider("healthy")
    sick = ScriptedProvider("sick")
    sick.healthy = False
    router = AIRequestRouter()
    router.register_provider(healthy)
    router.register_provider(sick)
    monitor = HealthMonitor(router)

    results = asyncio.run(monitor.check_all())

    assert results["healthy"].available is True
    assert results["sick"].available is False
    assert router.rank(RouteRequest(payload="hi")).keys == ("healthy",)

    sick.healthy = True
    asyncio.run(monitor.check_all())
    assert router.rank(RouteRequest(payload="hi")).keys == ("healthy", "sick")


def test_probe_that_raises_or_hangs_is_unhealthy() -> None:
    async def _invoke(request: RouteRequest) -> str:
        return "unused"

    async def _raises() -> bool:
        raise ConnectionError("refused")

    async def _hangs() -> bool:
        await asyncio.sleep(10)
        return True

    router = AIRequestRouter()
    router.register_provider(
        CallableProvider("raises", ProviderProfile(), _invoke, health_fn=_raises)
    )
    router.register_provider(
        CallableProvider("hangs", ProviderProfile(), _invoke, health_fn=_hangs)
    )
    monitor = HealthMonitor(router, probe_timeout_seconds=0.05)

    results = asyncio.run(monitor.check_all())

    assert results["raises"].available is False
    assert "ConnectionError" in (results["raises"].error or "")
    assert results["hangs"].error == "health check timed out"
    assert not router.rank(RouteRequest(payload="hi"))


def test_background_loop_starts_and_stops() -> None:
    provider = ScriptedProvider("p")
    router = AIRequestRouter()
    router.register_provider(provider)
    monitor = HealthMonitor(router, interval_seconds=0.01)

    async def _run() -> None:
        await monitor.start()
        assert monitor.running is True
        provider.healthy = False
        await asyncio.sleep(0.05)
        await monitor.close()

    asyncio.run(_run())

    assert monitor.running is False
    assert monitor.last_results()["p"].available is False
