from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from threading import Lock


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(slots=True)
class CircuitBreakerConfig:
    enabled: bool = True
    failure_threshold: int = 5
    recovery_timeout_seconds: float = 30.0
    half_open_max_requests: int = 1


@dataclass(slots=True)
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    opened_at_epoch: float = 0.0
    half_open_in_flight: int = 0


class CircuitBreakerRegistry:
    """Per-provider cool-down after repeated failures.

    ``admit`` is called while building the candidate snapshot for a request.
    A provider admitted in half-open state holds a probe slot until the
    router reports ``on_success``/``on_failure`` for it, or hands the slot
    back with ``release`` when the dispatch never reached that provider.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._clock = clock
        self._circuits: dict[str, _Circuit] = {}
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def admit(self, key: str) -> bool:
        if not self._config.enabled:
            return True

        with self._lock:
            circuit = self._circuits.setdefault(key, _Circuit())
            now = self._clock()

            if circuit.state == CircuitState.OPEN:
                if now - circuit.opened_at_epoch >= self._config.recovery_timeout_seconds:
                    circuit.state = CircuitState.HALF_OPEN
                    circuit.half_open_in_flight = 0
                else:
                    return False

            if circuit.state == CircuitState.HALF_OPEN:
                if circuit.half_open_in_flight >= self._config.half_open_max_requests:
                    return False
                circuit.half_open_in_flight += 1
                return True

            return True

    def peek(self, key: str) -> bool:
        """Same answer as ``admit`` without taking a half-open probe slot."""
        if not self._config.enabled:
            return True
        with self._lock:
            circuit = self._circuits.get(key)
            if circuit is None or circuit.state == CircuitState.CLOSED:
                return True
            if circuit.state == CircuitState.OPEN:
                return (
                    self._clock() - circuit.opened_at_epoch
                    >= self._config.recovery_timeout_seconds
                )
            return circuit.half_open_in_flight < self._config.half_open_max_requests

    def release(self, key: str) -> None:
        if not self._config.enabled:
            return
        with self._lock:
            circuit = self._circuits.get(key)
            if circuit is not None and circuit.state == CircuitState.HALF_OPEN:
                circuit.half_open_in_flight = max(0, circuit.half_open_in_flight - 1)

    def on_success(self, key: str) -> None:
        if not self._config.enabled:
            return

        with self._lock:
            circuit = self._circuits.setdefault(key, _Circuit())
            if circuit.state == CircuitState.HALF_OPEN:
                circuit.half_open_in_flight = max(0, circuit.half_open_in_flight - 1)
                circuit.opened_at_epoch = 0.0
            circuit.failure_count = 0
            circuit.state = CircuitState.CLOSED

    def on_failure(self, key: str) -> None:
        if not self._config.enabled:
            return

        with self._lock:
            circuit = self._circuits.setdefault(key, _Circuit())
            now = self._clock()
            if circuit.state == CircuitState.HALF_OPEN:
                circuit.half_open_in_flight = max(0, circuit.half_open_in_flight - 1)
                circuit.state = CircuitState.OPEN
                circuit.opened_at_epoch = now
                circuit.failure_count = self._config.failure_threshold
                return

            circuit.failure_count += 1
            if circuit.failure_count >= self._config.failure_threshold:
                circuit.state = CircuitState.OPEN
                circuit.opened_at_epoch = now

    def reset(self, key: str) -> None:
        with self._lock:
            self._circuits.pop(key, None)

    def snapshot(self, key: str) -> dict[str, int | float | str]:
        with self._lock:
            circuit = self._circuits.get(key) or _Circuit()
            return {
                "state": circuit.state.value,
                "failure_count": circuit.failure_count,
                "opened_at_epoch": round(circuit.opened_at_epoch, 3),
                "half_open_in_flight": circuit.half_open_in_flight,
            }
