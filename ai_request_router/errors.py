from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class ProviderError(Exception):
    """Failure of a single provider call; the router recovers by trying the next one."""

    kind = "error"

    def __init__(self, provider_key: str, detail: str):
        self.provider_key = provider_key
        self.detail = detail
        super().__init__(f"{provider_key}: {detail}")


class ProviderUnavailableError(ProviderError):
    kind = "unavailable"


class ProviderTimeoutError(ProviderError):
    kind = "timeout"

    def __init__(self, provider_key: str, timeout_ms: float):
        self.timeout_ms = float(timeout_ms)
        super().__init__(provider_key, f"timed out after {self.timeout_ms:.0f}ms")


class ProviderCallError(ProviderError):
    kind = "error"

    def __init__(
        self, provider_key: str, detail: str, *, status_code: int | None = None
    ):
        self.status_code = status_code
        super().__init__(provider_key, detail)


@dataclass(slots=True, frozen=True)
class ProviderFailure:
    provider_key: str
    kind: str
    detail: str
    latency_ms: float
    rank: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider_key,
            "kind": self.kind,
            "detail": self.detail,
            "latency_ms": round(self.latency_ms, 3),
            "rank": self.rank,
        }


class RouterError(Exception):
    """Base class for errors surfaced to callers of ``AIRequestRouter.route``."""


class InvalidRequestError(RouterError, ValueError):
    pass


class NoEligibleProviderError(RouterError):
    def __init__(self, message: str, *, exclusions: dict[str, str] | None = None):
        self.exclusions = dict(exclusions or {})
        super().__init__(message)


class AllProvidersFailedError(RouterError):
    def __init__(self, failures: list[ProviderFailure], *, request_id: str = "-"):
        self.failures = list(failures)
        self.request_id = request_id
        attempted = ", ".join(
            f"{failure.provider_key}={failure.kind}" for failure in self.failures
        )
        super().__init__(f"All providers failed ({attempted or 'none attempted'}).")

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": "routing_exhausted",
            "message": str(self),
            "request_id": self.request_id,
            "attempted_count": len(self.failures),
            "failures": [failure.as_dict() for failure in self.failures],
        }


class UnknownProviderError(KeyError):
    def __init__(self, provider_key: str, known: list[str]):
        self.provider_key = provider_key
        self.known = known
        super().__init__(
            f"Provider '{provider_key}' is not registered. Known providers: "
            f"{', '.join(known) or '(none)'}."
        )
