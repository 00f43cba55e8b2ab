from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ai_request_router.models import Preferences, RouteRequest
from ai_request_router.registry import ProviderSnapshot

SORT_KEY_COST = "cost_asc"
SORT_KEY_SPEED = "latency_asc"
SORT_KEY_QUALITY = "quality_desc"
SORT_KEY_TIE_BREAK = "latency_asc_tiebreak"

EXCLUDED_UNAVAILABLE = "unavailable"
EXCLUDED_COST_CEILING = "cost_ceiling"
EXCLUDED_LATENCY_CEILING = "latency_ceiling"


@dataclass(slots=True, frozen=True)
class RankedEntry:
    key: str
    cost_per_call: float
    average_latency_ms: float
    quality_tier: int


@dataclass(slots=True, frozen=True)
class RankedList:
    """Provider order computed once for one request. Never mutated."""

    entries: tuple[RankedEntry, ...]
    sort_keys: tuple[str, ...]
    exclusions: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(entry.key for entry in self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> str:
        return self.entries[index].key

    def __bool__(self) -> bool:
        return bool(self.entries)

    def rank_of(self, key: str) -> int:
        return self.keys.index(key)

    def exclusion_map(self) -> dict[str, str]:
        return dict(self.exclusions)

    def explain(self) -> dict[str, Any]:
        return {
            "ranked": [
                {
                    "rank": index,
                    "provider": entry.key,
                    "cost_per_call": entry.cost_per_call,
                    "average_latency_ms": round(entry.average_latency_ms, 3),
                    "quality_tier": entry.quality_tier,
                }
                for index, entry in enumerate(self.entries)
            ],
            "sort_keys": list(self.sort_keys),
            "excluded": self.exclusion_map(),
        }


def preference_sort_keys(preferences: Preferences) -> list[str]:
    keys: list[str] = []
    if preferences.wants_low_cost:
        keys.append(SORT_KEY_COST)
    if preferences.wants_fast:
        keys.append(SORT_KEY_SPEED)
    if preferences.wants_excellent_quality:
        keys.append(SORT_KEY_QUALITY)
    keys.append(SORT_KEY_TIE_BREAK)
    return keys


def apply_hard_ceilings(
    candidates: Sequence[ProviderSnapshot],
    *,
    max_cost_units: float | None,
    max_latency_ms: float | None,
) -> tuple[list[ProviderSnapshot], dict[str, str]]:
    eligible: list[ProviderSnapshot] = []
    excluded: dict[str, str] = {}
    for candidate in candidates:
        if not candidate.available:
            excluded[candidate.key] = EXCLUDED_UNAVAILABLE
            continue
        if max_cost_units is not None and candidate.profile.cost_per_call > max_cost_units:
            excluded[candidate.key] = EXCLUDED_COST_CEILING
            continue
        if max_latency_ms is not None and candidate.average_latency_ms > max_latency_ms:
            excluded[candidate.key] = EXCLUDED_LATENCY_CEILING
            continue
        eligible.append(candidate)
    return eligible, excluded


def _sort_value(snapshot: ProviderSnapshot, sort_key: str) -> float:
    if sort_key == SORT_KEY_COST:
        return snapshot.profile.cost_per_call
    if sort_key in (SORT_KEY_SPEED, SORT_KEY_TIE_BREAK):
        return snapshot.average_latency_ms
    if sort_key == SORT_KEY_QUALITY:
        return -float(snapshot.profile.quality_tier)
    raise ValueError(f"Unknown sort key: {sort_key}")


def rank_providers(
    candidates: Sequence[ProviderSnapshot],
    request: RouteRequest,
    *,
    prior_exclusions: Mapping[str, str] | None = None,
) -> RankedList:
    """Order providers for one request with a strict lexicographic comparator.

    Hard ceilings remove providers outright. Remaining providers are sorted by
    the caller's preferences in the fixed order cost, speed, quality, then by
    observed average latency and finally by registration order, so identical
    inputs always produce the identical list. An empty result is returned
    as-is; the router decides how to fail.
    """
    eligible, excluded = apply_hard_ceilings(
        candidates,
        max_cost_units=request.effective_max_cost,
        max_latency_ms=request.effective_max_latency_ms,
    )
    sort_keys = preference_sort_keys(request.preferences)

    def _key(snapshot: ProviderSnapshot) -> tuple[float, ...]:
        values = [_sort_value(snapshot, sort_key) for sort_key in sort_keys]
        values.append(float(snapshot.registration_index))
        return tuple(values)

    ordered = sorted(eligible, key=_key)
    exclusions = {**dict(prior_exclusions or {}), **excluded}
    return RankedList(
        entries=tuple(
            RankedEntry(
                key=snapshot.key,
                cost_per_call=snapshot.profile.cost_per_call,
                average_latency_ms=snapshot.average_latency_ms,
                quality_tier=snapshot.profile.quality_tier,
            )
            for snapshot in ordered
        ),
        sort_keys=tuple(sort_keys),
        exclusions=tuple(sorted(exclusions.items())),
    )
