from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from ai_request_router.errors import (
    ProviderCallError,
    ProviderError,
    ProviderTimeoutError,
)
from ai_request_router.models import InvocationOutput, ProviderProfile, RouteRequest

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """One upstream backend.

    Subclasses implement ``_call``. ``invoke`` wraps it with the adapter's own
    deadline (the request's ``max_response_time_ms`` when set, otherwise the
    profile default) and an optional retry loop that lives entirely inside
    that deadline. Adapters never see the performance tracker.
    """

    def __init__(
        self,
        key: str,
        profile: ProviderProfile,
        *,
        max_attempts: int = 1,
        retry_delay_seconds: float = 0.0,
    ) -> None:
        normalized = key.strip()
        if not normalized:
            raise ValueError("Provider key must not be empty.")
        self.key = normalized
        self.profile = profile
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay_seconds = max(0.0, float(retry_delay_seconds))

    def timeout_ms_for(self, request: RouteRequest) -> float:
        if request.max_response_time_ms is not None:
            return float(request.max_response_time_ms)
        return float(self.profile.default_timeout_ms)

    async def invoke(self, request: RouteRequest) -> InvocationOutput:
        timeout_ms = self.timeout_ms_for(request)
        try:
            return await asyncio.wait_for(
                self._invoke_with_retries(request, timeout_ms),
                timeout=timeout_ms / 1000.0,
            )
        except TimeoutError as exc:
            raise ProviderTimeoutError(self.key, timeout_ms) from exc

    async def _invoke_with_retries(
        self, request: RouteRequest, timeout_ms: float
    ) -> InvocationOutput:
        attempt = 1
        while True:
            try:
                return await self._call_normalized(request, timeout_ms)
            except ProviderTimeoutError:
                raise
            except ProviderError as exc:
                if attempt >= self.max_attempts:
                    raise
                logger.info(
                    "provider_retry provider=%s attempt=%d/%d kind=%s detail=%s",
                    self.key,
                    attempt,
                    self.max_attempts,
                    exc.kind,
                    exc.detail,
                )
                attempt += 1
                if self.retry_delay_seconds > 0:
                    await asyncio.sleep(self.retry_delay_seconds)

    async def _call_normalized(
        self, request: RouteRequest, timeout_ms: float
    ) -> InvocationOutput:
        try:
            return await self._call(request, timeout_ms)
        except (ProviderError, asyncio.CancelledError, TimeoutError):
            raise
        except Exception as exc:
            raise ProviderCallError(
                self.key, f"{exc.__class__.__name__}: {exc}".rstrip(": ")
            ) from exc

    @abstractmethod
    async def _call(
        self, request: RouteRequest, timeout_ms: float
    ) -> InvocationOutput: ...

    async def health_check(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(key={self.key!r})"


InvokeFn = Callable[[RouteRequest], Awaitable[Any]]


class CallableProvider(ProviderAdapter):
    """Adapter around an in-process coroutine function.

    The function may return an ``InvocationOutput`` or any payload, and may
    raise ``ProviderError`` subclasses to signal a specific failure kind.
    """

    def __init__(
        self,
        key: str,
        profile: ProviderProfile,
        invoke_fn: InvokeFn,
        *,
        health_fn: Callable[[], Awaitable[bool]] | None = None,
        max_attempts: int = 1,
        retry_delay_seconds: float = 0.0,
    ) -> None:
        super().__init__(
            key,
            profile,
            max_attempts=max_attempts,
            retry_delay_seconds=retry_delay_seconds,
        )
        self._invoke_fn = invoke_fn
        self._health_fn = health_fn

    async def _call(self, request: RouteRequest, timeout_ms: float) -> InvocationOutput:
        del timeout_ms
        output = await self._invoke_fn(request)
        if isinstance(output, InvocationOutput):
            return output
        return InvocationOutput(payload=output)

    async def health_check(self) -> bool:
        if self._health_fn is None:
            return True
        return bool(await self._health_fn())