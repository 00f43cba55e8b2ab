from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from ai_request_router.config import DEFAULT_RACE_WIDTH
from ai_request_router.errors import (
    AllProvidersFailedError,
    ProviderError,
    ProviderFailure,
)
from ai_request_router.models import DispatchMode, InvocationOutput
from ai_request_router.quality import meets_quality_bar

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AttemptOutcome:
    """Settled result of calling one provider once."""

    provider_key: str
    rank: int
    latency_ms: float
    output: InvocationOutput | None = None
    error: ProviderError | None = None
    quality_score: float | None = None
    cost_units: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.output is not None

    def to_failure(self) -> ProviderFailure:
        error = self.error
        return ProviderFailure(
            provider_key=self.provider_key,
            kind=error.kind if error is not None else "error",
            detail=error.detail if error is not None else "no output",
            latency_ms=self.latency_ms,
            rank=self.rank,
        )


# Supplied by the router: calls one provider, records its sample, never raises
# ProviderError (failures come back inside the outcome).
AttemptFn = Callable[[str, int], Awaitable[AttemptOutcome]]


@dataclass(slots=True)
class DispatchOutcome:
    winner: AttemptOutcome
    strategy: DispatchMode
    attempted: list[str] = field(default_factory=list)
    failures: list[ProviderFailure] = field(default_factory=list)


class SequentialState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    EXHAUSTED = "exhausted"


class SequentialDispatch:
    """Try providers strictly in ranked order, one call in flight at a time.

    States: ``PENDING(i)`` moves to ``DONE`` on success or to ``PENDING(i+1)``
    on failure; running past the end of the list is ``EXHAUSTED``.
    """

    strategy = DispatchMode.SEQUENTIAL

    async def run(
        self,
        ranked: Sequence[str],
        attempt: AttemptFn,
        *,
        request_id: str = "-",
        start_rank: int = 0,
        attempted: list[str] | None = None,
        failures: list[ProviderFailure] | None = None,
    ) -> DispatchOutcome:
        attempted = attempted if attempted is not None else []
        failures = failures if failures is not None else []
        state = SequentialState.PENDING
        index = 0
        winner: AttemptOutcome | None = None

        while state is SequentialState.PENDING:
            if index >= len(ranked):
                state = SequentialState.EXHAUSTED
                continue
            provider_key = ranked[index]
            attempted.append(provider_key)
            outcome = await attempt(provider_key, start_rank + index)
            if outcome.succeeded:
                winner = outcome
                state = SequentialState.DONE
                continue
            failures.append(outcome.to_failure())
            index += 1

        if winner is None:
            raise AllProvidersFailedError(failures, request_id=request_id)
        return DispatchOutcome(
            winner=winner,
            strategy=self.strategy,
            attempted=attempted,
            failures=failures,
        )


def clamp_width(width: int, eligible: int) -> int:
    return max(1, min(int(width), int(eligible)))


class ConcurrentDispatch:
    """Race the top ``width`` providers and take the first acceptable success.

    A success is acceptable when it meets ``min_quality_score`` (no bar when
    unset). Successes under the bar are held back; if the race ends without an
    acceptable one, the best held success wins. If every racer failed, the
    rest of the ranked list is tried sequentially.

    Racers still in flight when a winner is chosen are cancelled when
    ``cancel_losers`` is set. Otherwise they are handed to ``on_detached`` and
    left to finish, so their latency still reaches the tracker.
    """

    strategy = DispatchMode.CONCURRENT

    def __init__(
        self,
        *,
        width: int = DEFAULT_RACE_WIDTH,
        cancel_losers: bool = False,
        on_detached: Callable[[asyncio.Task[AttemptOutcome]], None] | None = None,
        fallback: SequentialDispatch | None = None,
    ) -> None:
        self.width = max(1, int(width))
        self.cancel_losers = cancel_losers
        self._on_detached = on_detached
        self._fallback = fallback or SequentialDispatch()

    async def run(
        self,
        ranked: Sequence[str],
        attempt: AttemptFn,
        *,
        request_id: str = "-",
        min_quality_score: float | None = None,
    ) -> DispatchOutcome:
        width = clamp_width(self.width, len(ranked))
        racers = list(ranked[:width])
        attempted = list(racers)
        failures: list[ProviderFailure] = []
        held: list[AttemptOutcome] = []
        winner: AttemptOutcome | None = None

        tasks: dict[asyncio.Task[AttemptOutcome], int] = {
            asyncio.create_task(
                attempt(provider_key, rank),
                name=f"race:{request_id}:{provider_key}",
            ): rank
            for rank, provider_key in enumerate(racers)
        }
        pending: set[asyncio.Task[AttemptOutcome]] = set(tasks)

        try:
            while pending and winner is None:
                done, pending = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_COMPLETED
                )
                for task in sorted(done, key=lambda item: tasks[item]):
                    outcome = task.result()
                    if not outcome.succeeded:
                        failures.append(outcome.to_failure())
                        continue
                    if winner is None and meets_quality_bar(
                        outcome.quality_score, min_quality_score
                    ):
                        winner = outcome
                    else:
                        held.append(outcome)
        except asyncio.CancelledError:
            for task in pending:
                task.cancel()
            raise

        if pending:
            await self._settle_losers(pending, request_id=request_id)

        if winner is None and held:
            winner = max(
                held,
                key=lambda item: (item.quality_score or 0.0, -item.rank),
            )
            logger.info(
                "race_quality_bar_unmet request_id=%s provider=%s quality=%s bar=%s",
                request_id,
                winner.provider_key,
                winner.quality_score,
                min_quality_score,
            )

        if winner is not None:
            return DispatchOutcome(
                winner=winner,
                strategy=self.strategy,
                attempted=attempted,
                failures=failures,
            )

        remainder = list(ranked[width:])
        logger.info(
            "race_exhausted request_id=%s racers=%s falling_back=%d",
            request_id,
            ",".join(racers),
            len(remainder),
        )
        outcome = await self._fallback.run(
            remainder,
            attempt,
            request_id=request_id,
            start_rank=width,
            attempted=attempted,
            failures=failures,
        )
        return DispatchOutcome(
            winner=outcome.winner,
            strategy=self.strategy,
            attempted=outcome.attempted,
            failures=outcome.failures,
        )

    async def _settle_losers(
        self,
        pending: set[asyncio.Task[AttemptOutcome]],
        *,
        request_id: str,
    ) -> None:
        if self.cancel_losers:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info(
                "race_losers_cancelled request_id=%s count=%d",
                request_id,
                len(pending),
            )
            return
        for task in pending:
            if self._on_detached is not None:
                self._on_detached(task)
