from __future__ import annotations

import logging

import httpx

from ai_request_router.audit import JsonlAuditLogger
from ai_request_router.circuit_breaker import CircuitBreakerRegistry
from ai_request_router.config import ProviderConfig, RoutingConfig, load_routing_config
from ai_request_router.health import HealthMonitor
from ai_request_router.providers.http import build_http_provider
from ai_request_router.router import AIRequestRouter, AuditHook
from ai_request_router.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            timeout=None,
            connect=settings.http_connect_timeout_seconds,
            pool=settings.http_pool_timeout_seconds,
        )
    )


def _with_settings_overrides(
    provider: ProviderConfig, settings: Settings
) -> ProviderConfig:
    update: dict[str, object] = {}
    if provider.kind == "ollama" and not provider.base_url and settings.ollama_base_url:
        update["base_url"] = settings.ollama_base_url
    # Only fills in providers whose config file leaves the timeout unset.
    if (
        settings.provider_default_timeout_ms
        and "default_timeout_ms" not in provider.model_fields_set
    ):
        update["default_timeout_ms"] = settings.provider_default_timeout_ms
    if not update:
        return provider
    return provider.model_copy(update=update)


def build_router(
    config: RoutingConfig,
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
    audit_hook: AuditHook | None = None,
) -> AIRequestRouter:
    """Build a router with one HTTP adapter per enabled provider in ``config``.

    When no client is passed, the router owns the one it creates and closes
    it in ``aclose``. Same for the audit logger built from config/settings.
    """
    settings = settings or get_settings()
    owns_client = client is None
    http_client = client or build_http_client(settings)

    audit_logger: JsonlAuditLogger | None = None
    if audit_hook is None and (config.audit.enabled or settings.router_audit_log_enabled):
        audit_path = (
            config.audit.path if config.audit.enabled else settings.router_audit_log_path
        )
        audit_logger = JsonlAuditLogger(audit_path)
        audit_hook = audit_logger

    router = AIRequestRouter(
        circuit_breakers=CircuitBreakerRegistry(config.circuit_breaker.to_runtime()),
        default_mode=config.dispatch.default_mode,
        race_width=config.dispatch.race_width,
        cancel_losers=config.dispatch.cancel_losers,
        tracker_capacity=config.tracker.capacity,
        audit_hook=audit_hook,
    )
    for provider in config.enabled_providers():
        adapter = build_http_provider(
            _with_settings_overrides(provider, settings), http_client
        )
        router.register_provider(adapter)

    if owns_client:
        router.add_closer(http_client.aclose)
    if audit_logger is not None:
        logger_ref = audit_logger

        async def _close_audit() -> None:
            logger_ref.close()

        router.add_closer(_close_audit)

    logger.info(
        "router_built providers=%s default_mode=%s race_width=%d",
        ",".join(router.provider_keys()),
        config.dispatch.default_mode.value,
        config.dispatch.race_width,
    )
    return router


def build_router_from_path(
    config_path: str | None = None,
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> AIRequestRouter:
    settings = settings or get_settings()
    config = load_routing_config(config_path or settings.routing_config_path)
    return build_router(config, settings=settings, client=client)


def build_health_monitor(
    router: AIRequestRouter, config: RoutingConfig
) -> HealthMonitor | None:
    if not config.health_check.enabled:
        return None
    return HealthMonitor(
        router,
        interval_seconds=config.health_check.interval_seconds,
        probe_timeout_seconds=config.health_check.probe_timeout_seconds,
    )
