from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class CostPreference(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class SpeedPreference(str, Enum):
    FAST = "fast"
    NORMAL = "normal"
    SLOW = "slow"


class QualityPreference(str, Enum):
    BASIC = "basic"
    GOOD = "good"
    EXCELLENT = "excellent"


class DispatchMode(str, Enum):
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"


def _coerce_level(value: Any) -> Any:
    if isinstance(value, str):
        normalized = value.strip().lower()
        # "medium" is the level name older callers send for cost.
        return "normal" if normalized == "medium" else normalized
    return value


class Preferences(BaseModel):
    """Caller preference vector.

    ``cost`` and ``speed`` accept either a level or a number. A number is a
    hard ceiling (cost units per call, or average latency in ms) rather than
    an ordering preference.
    """

    model_config = ConfigDict(frozen=True)

    cost: CostPreference | float = CostPreference.NORMAL
    speed: SpeedPreference | float = SpeedPreference.NORMAL
    quality: QualityPreference = QualityPreference.GOOD

    @field_validator("cost", "speed", "quality", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("Preference levels must be strings or numbers.")
        return _coerce_level(value)

    @field_validator("cost", "speed")
    @classmethod
    def _non_negative_ceiling(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and value < 0:
            raise ValueError("Preference ceilings must be non-negative.")
        return value

    @property
    def cost_ceiling(self) -> float | None:
        return _as_ceiling(self.cost)

    @property
    def speed_ceiling_ms(self) -> float | None:
        return _as_ceiling(self.speed)

    @property
    def wants_low_cost(self) -> bool:
        return self.cost == CostPreference.LOW

    @property
    def wants_fast(self) -> bool:
        return self.speed == SpeedPreference.FAST

    @property
    def wants_excellent_quality(self) -> bool:
        return self.quality == QualityPreference.EXCELLENT


class RouteRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    payload: Any
    preferences: Preferences = Field(default_factory=Preferences)
    max_response_time_ms: int | None = None
    max_cost_units: float | None = None
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    providers: tuple[str, ...] | None = None
    min_quality_score: float | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("max_response_time_ms")
    @classmethod
    def _positive_latency(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("max_response_time_ms must be positive.")
        return value

    @field_validator("max_cost_units")
    @classmethod
    def _non_negative_cost(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError("max_cost_units must be non-negative.")
        return value

    @field_validator("providers", mode="before")
    @classmethod
    def _coerce_providers(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        cleaned = [str(item).strip() for item in value if str(item).strip()]
        return tuple(cleaned)

    @model_validator(mode="after")
    def _require_payload(self) -> RouteRequest:
        payload = self.payload
        if payload is None:
            raise ValueError("Request payload must not be empty.")
        if isinstance(payload, str) and not payload.strip():
            raise ValueError("Request payload must not be empty.")
        if isinstance(payload, (bytes, list, tuple, dict)) and len(payload) == 0:
            raise ValueError("Request payload must not be empty.")
        return self

    @property
    def effective_max_cost(self) -> float | None:
        return _tightest(self.max_cost_units, self.preferences.cost_ceiling)

    @property
    def effective_max_latency_ms(self) -> float | None:
        explicit = (
            float(self.max_response_time_ms)
            if self.max_response_time_ms is not None
            else None
        )
        return _tightest(explicit, self.preferences.speed_ceiling_ms)

    @property
    def prompt_text(self) -> str:
        payload = self.payload
        if isinstance(payload, str):
            return payload
        if isinstance(payload, dict):
            for key in ("prompt", "content", "text"):
                value = payload.get(key)
                if isinstance(value, str):
                    return value
        return str(payload)


def _as_ceiling(value: Any) -> float | None:
    if isinstance(value, Enum) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _tightest(*values: float | None) -> float | None:
    present = [value for value in values if value is not None]
    if not present:
        return None
    return min(present)


class ProviderProfile(BaseModel):
    declared_latency_ms: float = Field(default=1000.0, ge=0.0)
    cost_per_call: float = Field(default=0.0, ge=0.0)
    quality_tier: int = Field(default=5, ge=1, le=10)
    default_timeout_ms: float = Field(default=30000.0, gt=0.0)


@dataclass(slots=True, frozen=True)
class PerformanceSample:
    provider_key: str
    latency_ms: float
    timestamp: float
    success: bool = True


@dataclass(slots=True, frozen=True)
class ProviderStats:
    provider_key: str
    average_latency_ms: float
    sample_count: int
    failure_count: int
    last_sample_epoch: float | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider_key,
            "average_latency_ms": round(self.average_latency_ms, 3),
            "sample_count": self.sample_count,
            "failure_count": self.failure_count,
            "last_sample_epoch": self.last_sample_epoch,
        }


@dataclass(slots=True)
class InvocationOutput:
    """What an adapter hands back on success; the router wraps it in a RouteResult."""

    payload: Any
    cost_units: float | None = None
    usage: dict[str, int] = field(default_factory=dict)
    model: str | None = None


@dataclass(slots=True)
class RouteResult:
    provider_key: str
    payload: Any
    latency_ms: float
    cost_units: float
    rank: int
    request_id: str = "-"
    strategy: str = DispatchMode.SEQUENTIAL.value
    quality_score: float | None = None
    attempted: list[str] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    model: str | None = None

    @property
    def fallback_used(self) -> bool:
        return self.rank > 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "provider": self.provider_key,
            "model": self.model,
            "payload": self.payload,
            "latency_ms": round(self.latency_ms, 3),
            "cost_units": round(self.cost_units, 6),
            "rank": self.rank,
            "strategy": self.strategy,
            "quality_score": self.quality_score,
            "fallback_used": self.fallback_used,
            "attempted": list(self.attempted),
            "usage": dict(self.usage),
        }
