from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from functools import partial
from typing import Any

from pydantic import ValidationError

from ai_request_router.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from ai_request_router.config import DEFAULT_RACE_WIDTH
from ai_request_router.cost_ledger import CostLedger
from ai_request_router.dispatch import (
    AttemptOutcome,
    ConcurrentDispatch,
    DispatchOutcome,
    SequentialDispatch,
    clamp_width,
)
from ai_request_router.errors import (
    AllProvidersFailedError,
    InvalidRequestError,
    NoEligibleProviderError,
    ProviderError,
    ProviderTimeoutError,
    UnknownProviderError,
)
from ai_request_router.models import (
    DispatchMode,
    ProviderProfile,
    ProviderStats,
    RouteRequest,
    RouteResult,
)
from ai_request_router.performance_tracker import (
    DEFAULT_TRACKER_CAPACITY,
    PerformanceTracker,
)
from ai_request_router.providers.base import CallableProvider, InvokeFn, ProviderAdapter
from ai_request_router.quality import MAX_QUALITY_SCORE, score_result
from ai_request_router.ranking import RankedList, rank_providers
from ai_request_router.registry import ProviderRegistry, ProviderSnapshot

logger = logging.getLogger(__name__)

AuditHook = Callable[[dict[str, Any]], None]

EXCLUDED_NOT_REQUESTED = "not_requested"
EXCLUDED_UNAVAILABLE = "unavailable"
EXCLUDED_CIRCUIT_OPEN = "circuit_open"

__all__ = ["AIRequestRouter", "AuditHook"]


class AIRequestRouter:
    """Routes one normalized request to the best available provider.

    The router exclusively owns the provider registry, the performance
    tracker, the circuit breakers and the cost ledger. Ranking and dispatch
    only read snapshots; every settled provider call comes back through
    ``_attempt``, which is the single place that writes samples.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry | None = None,
        tracker: PerformanceTracker | None = None,
        circuit_breakers: CircuitBreakerRegistry | None = None,
        cost_ledger: CostLedger | None = None,
        default_mode: DispatchMode = DispatchMode.SEQUENTIAL,
        race_width: int = DEFAULT_RACE_WIDTH,
        cancel_losers: bool = False,
        tracker_capacity: int = DEFAULT_TRACKER_CAPACITY,
        audit_hook: AuditHook | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._registry = registry or ProviderRegistry()
        self._tracker = tracker or PerformanceTracker(capacity=tracker_capacity)
        self._breakers = circuit_breakers or CircuitBreakerRegistry(
            CircuitBreakerConfig(enabled=False)
        )
        self._costs = cost_ledger or CostLedger()
        self.default_mode = DispatchMode(default_mode)
        self.race_width = max(2, int(race_width))
        self.cancel_losers = cancel_losers
        self.audit_hook = audit_hook
        self._clock = clock
        self._detached: set[asyncio.Task[AttemptOutcome]] = set()
        self._closers: list[Callable[[], Awaitable[None]]] = []

        for adapter in self._registry.adapters():
            self._tracker.register(adapter.key, adapter.profile.declared_latency_ms)

    # Registry

    def register_provider(
        self,
        provider: ProviderAdapter | str,
        profile: ProviderProfile | None = None,
        *,
        invoke: InvokeFn | None = None,
        available: bool = True,
    ) -> ProviderAdapter:
        if isinstance(provider, ProviderAdapter):
            adapter = provider
        else:
            if profile is None or invoke is None:
                raise ValueError(
                    "Registering by key requires both a profile and an invoke function."
                )
            adapter = CallableProvider(provider, profile, invoke)

        self._registry.register(adapter, available=available)
        self._tracker.register(adapter.key, adapter.profile.declared_latency_ms)
        logger.info(
            "provider_registered provider=%s cost=%s latency_ms=%s quality=%d available=%s",
            adapter.key,
            adapter.profile.cost_per_call,
            adapter.profile.declared_latency_ms,
            adapter.profile.quality_tier,
            available,
        )
        return adapter

    def set_availability(self, key: str, available: bool) -> None:
        previous = self._registry.is_available(key)
        self._registry.set_availability(key, available)
        if previous != bool(available):
            logger.info("provider_availability provider=%s available=%s", key, available)
            self._audit("provider_availability", provider=key, available=bool(available))

    def provider_keys(self) -> list[str]:
        return self._registry.keys()

    def adapter(self, key: str) -> ProviderAdapter:
        return self._registry.adapter(key)

    def get_provider_stats(self, key: str) -> ProviderStats:
        if key not in self._registry:
            raise UnknownProviderError(key, self._registry.keys())
        return self._tracker.stats(key)

    def performance_tracker(self) -> PerformanceTracker:
        return self._tracker

    def circuit_snapshot(self, key: str) -> dict[str, int | float | str]:
        return self._breakers.snapshot(key)

    def get_cost_statistics(self) -> dict[str, float]:
        return self._costs.totals()

    def reset_cost_statistics(self) -> None:
        self._costs.reset()

    def add_closer(self, closer: Callable[[], Awaitable[None]]) -> None:
        self._closers.append(closer)

    # Routing

    def rank(self, request: RouteRequest | Mapping[str, Any]) -> RankedList:
        """Ranked provider order for ``request`` without calling anything."""
        normalized = self._validate(request)
        candidates, exclusions, _ = self._candidate_snapshot(normalized, admit=False)
        return rank_providers(candidates, normalized, prior_exclusions=exclusions)

    async def route(self, request: RouteRequest | Mapping[str, Any]) -> RouteResult:
        normalized = self._validate(request)
        request_id = normalized.request_id
        started = self._clock()
        candidates, exclusions, admitted = self._candidate_snapshot(
            normalized, admit=True
        )
        attempted: set[str] = set()
        try:
            ranked = rank_providers(
                candidates, normalized, prior_exclusions=exclusions
            )
            if not ranked:
                raise self._no_eligible(normalized, ranked)

            mode = self.select_mode(normalized, ranked)
            self._log_decision(normalized, ranked, mode)
            attempt = partial(self._attempt, normalized, attempted)
            outcome = await self._dispatch(normalized, ranked, mode, attempt)
        except AllProvidersFailedError as exc:
            logger.error(
                "route_exhausted request_id=%s attempted=%s",
                request_id,
                ",".join(failure.provider_key for failure in exc.failures),
            )
            self._audit("route_exhausted", **exc.as_dict())
            raise
        finally:
            for key in admitted:
                if key not in attempted:
                    self._breakers.release(key)

        result = self._build_result(normalized, outcome)
        logger.info(
            (
                "route_completed request_id=%s provider=%s rank=%d strategy=%s "
                "latency_ms=%.2f total_ms=%.2f attempts=%d"
            ),
            request_id,
            result.provider_key,
            result.rank,
            result.strategy,
            result.latency_ms,
            (self._clock() - started) * 1000.0,
            len(result.attempted),
        )
        self._audit(
            "route_completed",
            request_id=request_id,
            provider=result.provider_key,
            rank=result.rank,
            strategy=result.strategy,
            latency_ms=round(result.latency_ms, 3),
            cost_units=result.cost_units,
            quality_score=result.quality_score,
            attempted=result.attempted,
            failures=[failure.as_dict() for failure in outcome.failures],
        )
        return result

    async def drain(self) -> None:
        """Wait for race losers that were left running to settle."""
        while self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        for adapter in self._registry.adapters():
            await adapter.aclose()
        for closer in self._closers:
            await closer()
        self._closers.clear()

    # Internals

    def _validate(self, request: RouteRequest | Mapping[str, Any]) -> RouteRequest:
        if isinstance(request, RouteRequest):
            normalized = request
        else:
            try:
                normalized = RouteRequest.model_validate(dict(request))
            except ValidationError as exc:
                raise InvalidRequestError(str(exc)) from exc

        if normalized.min_quality_score is not None and not (
            0.0 <= normalized.min_quality_score <= MAX_QUALITY_SCORE
        ):
            raise InvalidRequestError(
                f"min_quality_score must be between 0 and {MAX_QUALITY_SCORE:g}."
            )
        if normalized.providers is not None:
            unknown = [key for key in normalized.providers if key not in self._registry]
            if unknown:
                raise InvalidRequestError(
                    f"Unknown providers requested: {', '.join(unknown)}."
                )
        return normalized

    def _candidate_snapshot(
        self, request: RouteRequest, *, admit: bool
    ) -> tuple[list[ProviderSnapshot], dict[str, str], list[str]]:
        keys = self._registry.keys()
        latencies = {key: self._tracker.average_latency(key) for key in keys}
        allowlist = set(request.providers) if request.providers is not None else None

        candidates: list[ProviderSnapshot] = []
        exclusions: dict[str, str] = {}
        admitted: list[str] = []
        for snapshot in self._registry.snapshot(latencies):
            if allowlist is not None and snapshot.key not in allowlist:
                exclusions[snapshot.key] = EXCLUDED_NOT_REQUESTED
                continue
            if not snapshot.available:
                exclusions[snapshot.key] = EXCLUDED_UNAVAILABLE
                continue
            if self._breakers.enabled:
                allowed = (
                    self._breakers.admit(snapshot.key)
                    if admit
                    else self._breakers.peek(snapshot.key)
                )
                if not allowed:
                    exclusions[snapshot.key] = EXCLUDED_CIRCUIT_OPEN
                    continue
                if admit:
                    admitted.append(snapshot.key)
            candidates.append(snapshot)
        return candidates, exclusions, admitted

    def _no_eligible(
        self, request: RouteRequest, ranked: RankedList
    ) -> NoEligibleProviderError:
        exclusions = ranked.exclusion_map()
        logger.warning(
            "route_no_eligible_provider request_id=%s excluded=%s",
            request.request_id,
            ",".join(f"{key}:{reason}" for key, reason in sorted(exclusions.items())),
        )
        self._audit(
            "route_no_eligible_provider",
            request_id=request.request_id,
            excluded=exclusions,
            max_cost_units=request.effective_max_cost,
            max_latency_ms=request.effective_max_latency_ms,
        )
        if not exclusions:
            message = "No providers are registered."
        else:
            message = "No provider satisfies availability and hard ceilings."
        return NoEligibleProviderError(message, exclusions=exclusions)

    def select_mode(self, request: RouteRequest, ranked: RankedList) -> DispatchMode:
        if len(ranked) < 2:
            return DispatchMode.SEQUENTIAL
        if request.preferences.wants_fast or self.default_mode is DispatchMode.CONCURRENT:
            return DispatchMode.CONCURRENT
        return DispatchMode.SEQUENTIAL

    def _log_decision(
        self, request: RouteRequest, ranked: RankedList, mode: DispatchMode
    ) -> None:
        width = clamp_width(self.race_width, len(ranked))
        logger.info(
            "route_decision request_id=%s mode=%s width=%d ranked=%s sort_keys=%s",
            request.request_id,
            mode.value,
            width if mode is DispatchMode.CONCURRENT else 1,
            ",".join(ranked.keys),
            ",".join(ranked.sort_keys),
        )
        self._audit(
            "route_decision",
            request_id=request.request_id,
            mode=mode.value,
            race_width=width if mode is DispatchMode.CONCURRENT else None,
            **ranked.explain(),
        )

    async def _dispatch(
        self,
        request: RouteRequest,
        ranked: RankedList,
        mode: DispatchMode,
        attempt: Callable[[str, int], Awaitable[AttemptOutcome]],
    ) -> DispatchOutcome:
        if mode is DispatchMode.CONCURRENT:
            strategy = ConcurrentDispatch(
                width=self.race_width,
                cancel_losers=self.cancel_losers,
                on_detached=self._track_detached,
            )
            return await strategy.run(
                ranked.keys,
                attempt,
                request_id=request.request_id,
                min_quality_score=request.min_quality_score,
            )
        return await SequentialDispatch().run(
            ranked.keys, attempt, request_id=request.request_id
        )

    async def _attempt(
        self,
        request: RouteRequest,
        attempted: set[str],
        provider_key: str,
        rank: int,
    ) -> AttemptOutcome:
        attempted.add(provider_key)
        adapter = self._registry.adapter(provider_key)
        logger.info(
            "provider_attempt request_id=%s provider=%s rank=%d",
            request.request_id,
            provider_key,
            rank,
        )
        started = self._clock()
        try:
            output = await adapter.invoke(request)
        except ProviderTimeoutError as exc:
            return self._record_failure(request, provider_key, rank, exc.timeout_ms, exc)
        except ProviderError as exc:
            elapsed_ms = (self._clock() - started) * 1000.0
            return self._record_failure(request, provider_key, rank, elapsed_ms, exc)
        except asyncio.CancelledError:
            elapsed_ms = (self._clock() - started) * 1000.0
            # A cancelled call never finished, so it is charged as a timeout.
            penalty_ms = max(elapsed_ms, adapter.timeout_ms_for(request))
            self._tracker.record(provider_key, penalty_ms, success=False)
            self._breakers.release(provider_key)
            logger.info(
                "provider_cancelled request_id=%s provider=%s elapsed_ms=%.2f recorded_ms=%.2f",
                request.request_id,
                provider_key,
                elapsed_ms,
                penalty_ms,
            )
            raise

        latency_ms = (self._clock() - started) * 1000.0
        self._tracker.record(provider_key, latency_ms, success=True)
        self._breakers.on_success(provider_key)
        cost_units = (
            float(output.cost_units)
            if output.cost_units is not None
            else adapter.profile.cost_per_call
        )
        self._costs.charge(provider_key, cost_units)
        quality_score = score_result(output.payload, adapter.profile.quality_tier)
        self._audit(
            "provider_success",
            request_id=request.request_id,
            provider=provider_key,
            rank=rank,
            latency_ms=round(latency_ms, 3),
            cost_units=cost_units,
            quality_score=quality_score,
        )
        return AttemptOutcome(
            provider_key=provider_key,
            rank=rank,
            latency_ms=latency_ms,
            output=output,
            quality_score=quality_score,
            cost_units=cost_units,
        )

    def _record_failure(
        self,
        request: RouteRequest,
        provider_key: str,
        rank: int,
        latency_ms: float,
        error: ProviderError,
    ) -> AttemptOutcome:
        self._tracker.record(provider_key, latency_ms, success=False)
        self._breakers.on_failure(provider_key)
        logger.warning(
            "provider_failure request_id=%s provider=%s rank=%d kind=%s latency_ms=%.2f detail=%s",
            request.request_id,
            provider_key,
            rank,
            error.kind,
            latency_ms,
            error.detail,
        )
        self._audit(
            "provider_failure",
            request_id=request.request_id,
            provider=provider_key,
            rank=rank,
            kind=error.kind,
            detail=error.detail,
            latency_ms=round(latency_ms, 3),
        )
        return AttemptOutcome(
            provider_key=provider_key,
            rank=rank,
            latency_ms=latency_ms,
            error=error,
        )

    def _track_detached(self, task: asyncio.Task[AttemptOutcome]) -> None:
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)

    def _build_result(self, request: RouteRequest, outcome: DispatchOutcome) -> RouteResult:
        winner = outcome.winner
        output = winner.output
        if output is None:
            raise AllProvidersFailedError(outcome.failures, request_id=request.request_id)
        return RouteResult(
            provider_key=winner.provider_key,
            payload=output.payload,
            latency_ms=winner.latency_ms,
            cost_units=winner.cost_units,
            rank=winner.rank,
            request_id=request.request_id,
            strategy=outcome.strategy.value,
            quality_score=winner.quality_score,
            attempted=list(outcome.attempted),
            usage=dict(output.usage),
            model=output.model,
        )

    def _audit(self, event: str, **fields: Any) -> None:
        if self.audit_hook is None:
            return
        try:
            self.audit_hook({"event": event, **fields})
        except Exception as exc:
            logger.debug("audit_write_failed event=%s error=%s", event, exc)
