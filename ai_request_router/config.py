from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from ai_request_router.circuit_breaker import CircuitBreakerConfig
from ai_request_router.models import DispatchMode, ProviderProfile
from ai_request_router.performance_tracker import DEFAULT_TRACKER_CAPACITY

DEFAULT_RACE_WIDTH = 2
DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "ollama": "http://localhost:11434",
}
DEFAULT_API_KEY_ENVS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


class ProviderConfig(BaseModel):
    key: str
    kind: Literal["openai", "anthropic", "ollama"] = "openai"
    model: str
    base_url: str | None = None
    api_key: str | None = None
    api_key_env: str | None = None
    organization: str | None = None
    enabled: bool = True
    declared_latency_ms: float = Field(default=1000.0, ge=0.0)
    cost_per_call: float = Field(default=0.0, ge=0.0)
    cost_per_1k_tokens: float | None = Field(default=None, ge=0.0)
    quality_tier: int = Field(default=5, ge=1, le=10)
    default_timeout_ms: float = Field(default=30000.0, gt=0.0)
    max_attempts: int = Field(default=1, ge=1)
    retry_delay_seconds: float = Field(default=0.0, ge=0.0)
    system_prompt: str | None = None
    default_temperature: float = 0.7
    default_max_tokens: int = 2000

    @field_validator("key")
    @classmethod
    def _strip_key(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Provider key must not be empty.")
        return normalized

    @property
    def profile(self) -> ProviderProfile:
        return ProviderProfile(
            declared_latency_ms=self.declared_latency_ms,
            cost_per_call=self.cost_per_call,
            quality_tier=self.quality_tier,
            default_timeout_ms=self.default_timeout_ms,
        )

    def effective_base_url(self) -> str:
        return (self.base_url or DEFAULT_BASE_URLS[self.kind]).rstrip("/")

    def resolved_api_key(self) -> str | None:
        env_name = self.api_key_env or DEFAULT_API_KEY_ENVS.get(self.kind)
        if env_name:
            env_value = os.getenv(env_name, "").strip()
            if env_value:
                return env_value
        return self.api_key


class DispatchConfig(BaseModel):
    default_mode: DispatchMode = DispatchMode.SEQUENTIAL
    race_width: int = Field(default=DEFAULT_RACE_WIDTH, ge=2)
    cancel_losers: bool = False


class TrackerConfig(BaseModel):
    capacity: int = Field(default=DEFAULT_TRACKER_CAPACITY, ge=1)


class CircuitBreakerSettings(BaseModel):
    enabled: bool = False
    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout_seconds: float = Field(default=30.0, ge=0.0)
    half_open_max_requests: int = Field(default=1, ge=1)

    def to_runtime(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            enabled=self.enabled,
            failure_threshold=self.failure_threshold,
            recovery_timeout_seconds=self.recovery_timeout_seconds,
            half_open_max_requests=self.half_open_max_requests,
        )


class AuditConfig(BaseModel):
    enabled: bool = False
    path: str = "logs/router_decisions.jsonl"


class HealthCheckConfig(BaseModel):
    enabled: bool = False
    interval_seconds: float = Field(default=30.0, gt=0.0)
    probe_timeout_seconds: float = Field(default=5.0, gt=0.0)


class RoutingConfig(BaseModel):
    providers: list[ProviderConfig] = Field(default_factory=list)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    circuit_breaker: CircuitBreakerSettings = Field(
        default_factory=CircuitBreakerSettings
    )
    audit: AuditConfig = Field(default_factory=AuditConfig)
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)

    @field_validator("providers", mode="before")
    @classmethod
    def _coerce_providers(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, dict):
            coerced: list[dict[str, Any]] = []
            for raw_key, raw_provider in value.items():
                if raw_provider is None:
                    raw_provider = {}
                if not isinstance(raw_provider, dict):
                    raise ValueError(
                        f"Provider config for '{raw_key}' must be an object."
                    )
                coerced.append({"key": raw_key, **raw_provider})
            return coerced
        return value

    @model_validator(mode="after")
    def _unique_keys(self) -> RoutingConfig:
        seen: set[str] = set()
        for provider in self.providers:
            if provider.key in seen:
                raise ValueError(f"Duplicate provider key '{provider.key}'.")
            seen.add(provider.key)
        return self

    def provider(self, key: str) -> ProviderConfig | None:
        for provider in self.providers:
            if provider.key == key:
                return provider
        return None

    def enabled_providers(self) -> list[ProviderConfig]:
        return [provider for provider in self.providers if provider.enabled]


def load_routing_config(config_path: str | Path) -> RoutingConfig:
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Routing config not found at '{config_path}'. "
            "Create it or set ROUTING_CONFIG_PATH."
        )

    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Expected YAML object in '{config_path}'.")

    return RoutingConfig.model_validate(raw)
