from __future__ import annotations

from ai_request_router.models import ProviderProfile, RouteRequest
from ai_request_router.ranking import (
    EXCLUDED_COST_CEILING,
    EXCLUDED_LATENCY_CEILING,
    EXCLUDED_UNAVAILABLE,
    SORT_KEY_COST,
    SORT_KEY_QUALITY,
    SORT_KEY_SPEED,
    SORT_KEY_TIE_BREAK,
    preference_sort_keys,
    rank_providers,
)
from ai_request_router.registry import ProviderSnapshot


def _snapshot(
    key: str,
    *,
    cost: float,
    latency_ms: float,
    quality: int,
    index: int,
    available: bool = True,
) -> ProviderSnapshot:
    return ProviderSnapshot(
        key=key,
        profile=ProviderProfile(
            declared_latency_ms=latency_ms,
            cost_per_call=cost,
            quality_tier=quality,
        ),
        available=available,
        average_latency_ms=latency_ms,
        registration_index=index,
    )


def _fleet() -> list[ProviderSnapshot]:
    return [
        _snapshot("fast", cost=0.001, latency_ms=100.0, quality=7, index=0),
        _snapshot("premium", cost=0.01, latency_ms=500.0, quality=9, index=1),
    ]


def _request(**preferences: object) -> RouteRequest:
    return RouteRequest.model_validate(
        {"payload": "hello", "preferences": preferences}
    )


def test_low_cost_ranks_cheapest_first() -> None:
    ranked = rank_providers(_fleet(), _request(cost="low"))

    assert ranked.keys == ("fast", "premium")
    assert ranked.sort_keys == (SORT_KEY_COST, SORT_KEY_TIE_BREAK)


def test_excellent_quality_ranks_premium_first() -> None:
    ranked = rank_providers(_fleet(), _request(quality="excellent"))

    assert ranked.keys == ("premium", "fast")
    assert ranked.sort_keys == (SORT_KEY_QUALITY, SORT_KEY_TIE_BREAK)


def test_cost_outranks_quality_when_both_requested() -> None:
    ranked = rank_providers(_fleet(), _request(cost="low", quality="excellent"))

    assert ranked.keys == ("fast", "premium")


def test_speed_sorts_by_observed_latency() -> None:
    snapshots = [
        _snapshot("slow-cheap", cost=0.0, latency_ms=900.0, quality=5, index=0),
        _snapshot("quick", cost=0.5, latency_ms=80.0, quality=5, index=1),
    ]

    ranked = rank_providers(snapshots, _request(speed="fast"))

    assert ranked.keys == ("quick", "slow-cheap")
    assert ranked.sort_keys == (SORT_KEY_SPEED, SORT_KEY_TIE_BREAK)


def test_unavailable_provider_is_never_ranked() -> None:
    snapshots = _fleet() + [
        _snapshot("down", cost=0.0, latency_ms=1.0, quality=10, index=2, available=False)
    ]

    for preferences in ({}, {"cost": "low"}, {"speed": "fast"}, {"quality": "excellent"}):
        ranked = rank_providers(snapshots, _request(**preferences))
        assert "down" not in ranked.keys
        assert ranked.exclusion_map()["down"] == EXCLUDED_UNAVAILABLE


def test_ranking_is_deterministic_and_falls_back_to_registration_order() -> None:
    snapshots = [
        _snapshot("b", cost=0.1, latency_ms=200.0, quality=5, index=0),
        _snapshot("a", cost=0.1, latency_ms=200.0, quality=5, index=1),
        _snapshot("c", cost=0.1, latency_ms=200.0, quality=5, index=2),
    ]
    request = _request(cost="low", quality="excellent")

    first = rank_providers(snapshots, request)
    second = rank_providers(list(reversed(snapshots)), request)

    assert first.keys == ("b", "a", "c")
    assert second.keys == first.keys


def test_hard_ceilings_exclude_providers() -> None:
    request = RouteRequest.model_validate(
        {"payload": "hello", "max_cost_units": 0.005, "max_response_time_ms": 50}
    )
    snapshots = _fleet() + [
        _snapshot("cheap-quick", cost=0.0, latency_ms=20.0, quality=3, index=2)
    ]

    ranked = rank_providers(snapshots, request)

    assert ranked.keys == ("cheap-quick",)
    assert ranked.exclusion_map() == {
        "fast": EXCLUDED_LATENCY_CEILING,
        "premium": EXCLUDED_COST_CEILING,
    }


def test_numeric_preferences_act_as_ceilings() -> None:
    ranked = rank_providers(_fleet(), _request(cost=0.005))

    assert ranked.keys == ("fast",)
    assert preference_sort_keys(_request(cost=0.005).preferences) == [
        SORT_KEY_TIE_BREAK
    ]

    ranked = rank_providers(_fleet(), _request(speed=200))
    assert ranked.keys == ("fast",)
    assert ranked.exclusion_map() == {"premium": EXCLUDED_LATENCY_CEILING}


def test_empty_result_is_returned_not_raised() -> None:
    ranked = rank_providers(_fleet(), _request(cost=0.0))

    assert not ranked
    assert len(ranked) == 0
    assert set(ranked.exclusion_map()) == {"fast", "premium"}


def test_explain_lists_rank_and_prior_exclusions() -> None:
    ranked = rank_providers(
        _fleet(), _request(), prior_exclusions={"other": "not_requested"}
    )

    explain = ranked.explain()
    assert [item["provider"] for item in explain["ranked"]] == ["fast", "premium"]
    assert explain["ranked"][1]["rank"] == 1
    assert explain["excluded"] == {"other": "not_requested"}
    assert ranked.rank_of("premium") == 1
