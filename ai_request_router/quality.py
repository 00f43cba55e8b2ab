from __future__ import annotations

from typing import Any

MIN_QUALITY_SCORE = 1.0
MAX_QUALITY_SCORE = 10.0


def score_result(payload: Any, quality_tier: int) -> float:
    """Heuristic 1-10 score for a successful result.

    Starts from the provider's declared tier and adjusts for text shape:
    very short answers lose two points, very long ones lose one, mid-length
    ones gain one; multi-line structure and full sentences gain one each.
    Non-text payloads keep the declared tier.
    """
    score = float(quality_tier)
    if not isinstance(payload, str):
        return _clamp(score)

    length = len(payload)
    if length < 50:
        score -= 2
    elif length > 1000:
        score -= 1
    else:
        score += 1

    if "\n" in payload:
        score += 1
    if "." in payload:
        score += 1

    return _clamp(score)


def meets_quality_bar(score: float | None, minimum: float | None) -> bool:
    if minimum is None:
        return True
    if score is None:
        return False
    return score >= minimum


def _clamp(score: float) -> float:
    return max(MIN_QUALITY_SCORE, min(MAX_QUALITY_SCORE, score))
