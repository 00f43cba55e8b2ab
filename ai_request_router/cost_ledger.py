from __future__ import annotations

from threading import Lock


class CostLedger:
    """Accumulated spend and call counts per provider since the last reset."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._totals: dict[str, float] = {}
        self._calls: dict[str, int] = {}

    def charge(self, provider_key: str, cost_units: float) -> float:
        amount = max(0.0, float(cost_units))
        with self._lock:
            total = self._totals.get(provider_key, 0.0) + amount
            self._totals[provider_key] = total
            self._calls[provider_key] = self._calls.get(provider_key, 0) + 1
            return total

    def totals(self) -> dict[str, float]:
        with self._lock:
            return dict(self._totals)

    def calls(self) -> dict[str, int]:
        with self._lock:
            return dict(self._calls)

    def total(self) -> float:
        with self._lock:
            return sum(self._totals.values())

    def reset(self) -> None:
        with self._lock:
            self._totals.clear()
            self._calls.clear()
