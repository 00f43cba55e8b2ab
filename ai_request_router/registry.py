from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

from ai_request_router.errors import UnknownProviderError
from ai_request_router.models import ProviderProfile
from ai_request_router.providers.base import ProviderAdapter


@dataclass(slots=True, frozen=True)
class ProviderSnapshot:
    """Read-only view of one provider used by the ranking policy."""

    key: str
    profile: ProviderProfile
    available: bool
    average_latency_ms: float
    registration_index: int


@dataclass(slots=True)
class _Entry:
    adapter: ProviderAdapter
    available: bool
    registration_index: int


class ProviderRegistry:
    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = Lock()
        self._next_index = 0

    def register(self, adapter: ProviderAdapter, *, available: bool = True) -> None:
        with self._lock:
            existing = self._entries.get(adapter.key)
            if existing is not None:
                # Re-registering keeps the original position for tie-breaks.
                existing.adapter = adapter
                existing.available = available
                return
            self._entries[adapter.key] = _Entry(
                adapter=adapter,
                available=available,
                registration_index=self._next_index,
            )
            self._next_index += 1

    def unregister(self, key: str) -> ProviderAdapter:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            raise UnknownProviderError(key, self.keys())
        return entry.adapter

    def set_availability(self, key: str, available: bool) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.available = bool(available)
                return
        raise UnknownProviderError(key, self.keys())

    def is_available(self, key: str) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.available)

    def adapter(self, key: str) -> ProviderAdapter:
        entry = self._entries.get(key)
        if entry is None:
            raise UnknownProviderError(key, self.keys())
        return entry.adapter

    def profile(self, key: str) -> ProviderProfile:
        return self.adapter(key).profile

    def keys(self) -> list[str]:
        with self._lock:
            entries = sorted(
                self._entries.items(), key=lambda item: item[1].registration_index
            )
        return [key for key, _ in entries]

    def adapters(self) -> list[ProviderAdapter]:
        return [self.adapter(key) for key in self.keys()]

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self, latency_of: dict[str, float]) -> list[ProviderSnapshot]:
        """Providers in registration order, with latencies supplied by the caller."""
        with self._lock:
            entries = sorted(
                self._entries.items(), key=lambda item: item[1].registration_index
            )
            return [
                ProviderSnapshot(
                    key=key,
                    profile=entry.adapter.profile,
                    available=entry.available,
                    average_latency_ms=float(latency_of.get(key, 0.0)),
                    registration_index=entry.registration_index,
                )
                for key, entry in entries
            ]
