from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    routing_config_path: str = "router.providers.yaml"
    http_connect_timeout_seconds: float = 5.0
    http_pool_timeout_seconds: float = 5.0
    router_audit_log_enabled: bool = False
    router_audit_log_path: str = "logs/router_decisions.jsonl"
    router_log_level: str = "INFO"
    ollama_base_url: str | None = None
    provider_default_timeout_ms: float | None = None

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
