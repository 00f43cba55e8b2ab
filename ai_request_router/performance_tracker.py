from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock

from ai_request_router.models import PerformanceSample, ProviderStats

DEFAULT_TRACKER_CAPACITY = 50


@dataclass(slots=True)
class _ProviderWindow:
    declared_latency_ms: float
    samples: deque[PerformanceSample]
    lock: Lock = field(default_factory=Lock)
    failures_in_window: int = 0


class PerformanceTracker:
    """Rolling latency window per provider.

    Each provider owns its own bounded buffer and lock, so recording for one
    provider never blocks readers or writers of another. ``average_latency``
    falls back to the declared latency until the first sample arrives.
    """

    def __init__(self, *, capacity: int = DEFAULT_TRACKER_CAPACITY) -> None:
        self._capacity = max(1, int(capacity))
        self._windows: dict[str, _ProviderWindow] = {}
        self._windows_lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def register(self, provider_key: str, declared_latency_ms: float) -> None:
        with self._windows_lock:
            window = self._windows.get(provider_key)
            if window is None:
                self._windows[provider_key] = _ProviderWindow(
                    declared_latency_ms=max(0.0, float(declared_latency_ms)),
                    samples=deque(),
                )
                return
        with window.lock:
            window.declared_latency_ms = max(0.0, float(declared_latency_ms))

    def record(
        self,
        provider_key: str,
        latency_ms: float,
        *,
        success: bool = True,
        timestamp: float | None = None,
    ) -> PerformanceSample:
        sample = PerformanceSample(
            provider_key=provider_key,
            latency_ms=max(0.0, float(latency_ms)),
            timestamp=time.time() if timestamp is None else float(timestamp),
            success=success,
        )
        window = self._window(provider_key)
        with window.lock:
            window.samples.append(sample)
            if not sample.success:
                window.failures_in_window += 1
            while len(window.samples) > self._capacity:
                evicted = window.samples.popleft()
                if not evicted.success:
                    window.failures_in_window -= 1
        return sample

    def average_latency(self, provider_key: str) -> float:
        window = self._windows.get(provider_key)
        if window is None:
            return 0.0
        with window.lock:
            count = len(window.samples)
            if count == 0:
                return window.declared_latency_ms
            return sum(sample.latency_ms for sample in window.samples) / count

    def samples(self, provider_key: str) -> list[PerformanceSample]:
        window = self._windows.get(provider_key)
        if window is None:
            return []
        with window.lock:
            return list(window.samples)

    def stats(self, provider_key: str) -> ProviderStats:
        window = self._windows.get(provider_key)
        if window is None:
            return ProviderStats(
                provider_key=provider_key,
                average_latency_ms=0.0,
                sample_count=0,
                failure_count=0,
                last_sample_epoch=None,
            )
        with window.lock:
            count = len(window.samples)
            last_epoch = window.samples[-1].timestamp if count else None
            failures = window.failures_in_window
            average = (
                sum(sample.latency_ms for sample in window.samples) / count
                if count
                else window.declared_latency_ms
            )
        return ProviderStats(
            provider_key=provider_key,
            average_latency_ms=average,
            sample_count=count,
            failure_count=failures,
            last_sample_epoch=last_epoch,
        )

    def snapshot_all(self) -> dict[str, ProviderStats]:
        with self._windows_lock:
            keys = list(self._windows)
        return {key: self.stats(key) for key in keys}

    def _window(self, provider_key: str) -> _ProviderWindow:
        window = self._windows.get(provider_key)
        if window is not None:
            return window
        with self._windows_lock:
            return self._windows.setdefault(
                provider_key,
                _ProviderWindow(declared_latency_ms=0.0, samples=deque()),
            )
