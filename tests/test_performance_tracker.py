from __future__ import annotations

import threading

from ai_request_router.performance_tracker import (
    DEFAULT_TRACKER_CAPACITY,
    PerformanceTracker,
)


def test_cold_start_uses_declared_latency() -> None:
    tracker = PerformanceTracker()
    tracker.register("fast", 120.0)

    assert tracker.average_latency("fast") == 120.0
    assert tracker.stats("fast").sample_count == 0


def test_unknown_provider_average_is_zero() -> None:
    tracker = PerformanceTracker()

    assert tracker.average_latency("missing") == 0.0
    assert tracker.samples("missing") == []


def test_average_is_mean_of_recorded_samples() -> None:
    tracker = PerformanceTracker()
    tracker.register("p", 1000.0)

    tracker.record("p", 100.0)
    tracker.record("p", 300.0)

    assert tracker.average_latency("p") == 200.0


def test_window_keeps_only_most_recent_samples() -> None:
    tracker = PerformanceTracker()
    tracker.register("p", 0.0)

    for index in range(DEFAULT_TRACKER_CAPACITY + 10):
        tracker.record("p", float(index))

    samples = tracker.samples("p")
    assert len(samples) == DEFAULT_TRACKER_CAPACITY
    assert samples[0].latency_ms == 10.0
    assert samples[-1].latency_ms == float(DEFAULT_TRACKER_CAPACITY + 9)
    expected = sum(range(10, DEFAULT_TRACKER_CAPACITY + 10)) / DEFAULT_TRACKER_CAPACITY
    assert tracker.average_latency("p") == expected


def test_repeated_timeouts_strictly_increase_average() -> None:
    tracker = PerformanceTracker()
    tracker.register("slow", 100.0)
    tracker.record("slow", 100.0)

    averages = [tracker.average_latency("slow")]
    for _ in range(5):
        tracker.record("slow", 5000.0, success=False)
        averages.append(tracker.average_latency("slow"))

    assert all(later > earlier for earlier, later in zip(averages, averages[1:]))


def test_failure_count_follows_evictions() -> None:
    tracker = PerformanceTracker(capacity=3)
    tracker.register("p", 0.0)

    tracker.record("p", 10.0, success=False)
    tracker.record("p", 10.0, success=False)
    tracker.record("p", 10.0)
    assert tracker.stats("p").failure_count == 2

    tracker.record("p", 10.0)
    tracker.record("p", 10.0)
    stats = tracker.stats("p")
    assert stats.sample_count == 3
    assert stats.failure_count == 0


def test_registration_keeps_existing_samples() -> None:
    tracker = PerformanceTracker()
    tracker.register("p", 500.0)
    tracker.record("p", 50.0)

    tracker.register("p", 900.0)

    assert tracker.average_latency("p") == 50.0


def test_concurrent_recording_never_loses_samples() -> None:
    tracker = PerformanceTracker(capacity=10_000)
    tracker.register("a", 0.0)
    tracker.register("b", 0.0)

    def _writer(key: str) -> None:
        for _ in range(500):
            tracker.record(key, 1.0)

    threads = [
        threading.Thread(target=_writer, args=(key,))
        for key in ("a", "b", "a", "b")
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert tracker.stats("a").sample_count == 1000
    assert tracker.stats("b").sample_count == 1000
    assert set(tracker.snapshot_all()) == {"a", "b"}


def test_stats_fields_come_from_one_consistent_view() -> None:
    tracker = PerformanceTracker(capacity=10_000)
    tracker.register("p", 0.0)
    done = threading.Event()

    def _writer() -> None:
        for index in range(2000):
            failed = index % 2 == 0
            tracker.record("p", 100.0 if failed else 0.0, success=not failed)
        done.set()

    thread = threading.Thread(target=_writer)
    thread.start()
    mismatches = 0
    while not done.is_set():
        stats = tracker.stats("p")
        if stats.sample_count:
            expected = 100.0 * stats.failure_count / stats.sample_count
            if abs(stats.average_latency_ms - expected) > 1e-6:
                mismatches += 1
    thread.join()

    assert mismatches == 0
    assert tracker.stats("p").sample_count == 2000
