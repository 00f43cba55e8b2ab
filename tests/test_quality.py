from __future__ import annotations

import pytest

from ai_request_router.quality import meets_quality_bar, score_result


@pytest.mark.parametrize(
    ("payload", "tier", "expected"),
    [
        ("ok", 5, 3.0),
        ("A sentence of moderate length that is long enough to count.", 5, 7.0),
        ("x" * 60 + "\nsecond line", 6, 8.0),
        ("y" * 1200, 5, 4.0),
        ("tiny", 1, 1.0),
        ("A well formed answer.\nWith structure and more than fifty characters.", 10, 10.0),
        ({"structured": True}, 7, 7.0),
    ],
)
def test_score_result(payload: object, tier: int, expected: float) -> None:
    assert score_result(payload, tier) == expected


def test_quality_bar() -> None:
    assert meets_quality_bar(3.0, None) is True
    assert meets_quality_bar(None, 5.0) is False
    assert meets_quality_bar(5.0, 5.0) is True
    assert meets_quality_bar(4.9, 5.0) is False
