from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from ai_request_router.router import AIRequestRouter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProviderHealth:
    provider_key: str
    available: bool
    checked_at_epoch: float
    error: str | None = None


class HealthMonitor:
    """Periodically probes every registered adapter and updates availability.

    A probe that raises counts as unhealthy. Probes run concurrently and each
    is bounded by ``probe_timeout_seconds``.
    """

    def __init__(
        self,
        router: AIRequestRouter,
        *,
        interval_seconds: float = 30.0,
        probe_timeout_seconds: float = 5.0,
    ) -> None:
        self._router = router
        self._interval_seconds = max(0.01, float(interval_seconds))
        self._probe_timeout_seconds = max(0.01, float(probe_timeout_seconds))
        self._task: asyncio.Task[None] | None = None
        self._last: dict[str, ProviderHealth] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def last_results(self) -> dict[str, ProviderHealth]:
        return dict(self._last)

    async def check_all(self) -> dict[str, ProviderHealth]:
        keys = self._router.provider_keys()
        results = await asyncio.gather(*(self._probe(key) for key in keys))
        for health in results:
            self._last[health.provider_key] = health
            self._router.set_availability(health.provider_key, health.available)
        return {health.provider_key: health for health in results}

    async def start(self) -> None:
        if self.running:
            return
        await self.check_all()
        self._task = asyncio.create_task(self._run(), name="router-health-monitor")

    async def close(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.check_all()

    async def _probe(self, key: str) -> ProviderHealth:
        adapter = self._router.adapter(key)
        try:
            healthy = await asyncio.wait_for(
                adapter.health_check(), timeout=self._probe_timeout_seconds
            )
        except TimeoutError:
            return self._unhealthy(key, "health check timed out")
        except Exception as exc:
            return self._unhealthy(key, f"{exc.__class__.__name__}: {exc}")
        return ProviderHealth(
            provider_key=key,
            available=bool(healthy),
            checked_at_epoch=time.time(),
        )

    def _unhealthy(self, key: str, error: str) -> ProviderHealth:
        logger.warning("provider_health_failed provider=%s error=%s", key, error)
        return ProviderHealth(
            provider_key=key,
            available=False,
            checked_at_epoch=time.time(),
            error=error,
        )
