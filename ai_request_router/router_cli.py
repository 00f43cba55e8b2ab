from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Callable, cast

import yaml

from ai_request_router.bootstrap import build_router, configure_logging
from ai_request_router.config import RoutingConfig, load_routing_config
from ai_request_router.errors import RouterError
from ai_request_router.models import RouteRequest
from ai_request_router.settings import get_settings

DEFAULT_CONFIG_PATH = "router.providers.yaml"


def _add_config_path_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--path", default=None, help="Routing config YAML.")


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--cost", default="normal", help="low|normal|high or a ceiling.")
    parser.add_argument("--speed", default="normal", help="fast|normal|slow or a ceiling (ms).")
    parser.add_argument(
        "--quality", default="good", choices=["basic", "good", "excellent"]
    )
    parser.add_argument("--max-response-time-ms", type=int, default=None)
    parser.add_argument("--max-cost", type=float, default=None)
    parser.add_argument("--provider", action="append", dest="providers", default=None)


def _preference_value(raw: str) -> str | float:
    try:
        return float(raw)
    except ValueError:
        return raw


def _request_from_args(args: argparse.Namespace, payload: str) -> RouteRequest:
    return RouteRequest.model_validate(
        {
            "payload": payload,
            "preferences": {
                "cost": _preference_value(args.cost),
                "speed": _preference_value(args.speed),
                "quality": args.quality,
            },
            "max_response_time_ms": args.max_response_time_ms,
            "max_cost_units": args.max_cost,
            "providers": args.providers,
        }
    )


def _load_config(args: argparse.Namespace) -> RoutingConfig:
    path = args.path or get_settings().routing_config_path or DEFAULT_CONFIG_PATH
    return load_routing_config(path)


def _dump(payload: dict[str, Any], output_format: str) -> str:
    if output_format == "json":
        return json.dumps(payload, indent=2, sort_keys=False, default=str)
    return yaml.safe_dump(payload, sort_keys=False).rstrip()


def cmd_validate_config(args: argparse.Namespace) -> int:
    config = _load_config(args)
    enabled = [provider.key for provider in config.enabled_providers()]
    print(
        f"Routing config is valid: {args.path or get_settings().routing_config_path} "
        f"({len(enabled)} enabled providers: {', '.join(enabled) or 'none'})"
    )
    return 0


def cmd_explain_route(args: argparse.Namespace) -> int:
    config = _load_config(args)

    async def _explain() -> dict[str, Any]:
        router = build_router(config, settings=get_settings(), audit_hook=lambda _: None)
        try:
            request = _request_from_args(args, payload="explain")
            ranked = router.rank(request)
            explain = ranked.explain()
            explain["mode"] = router.select_mode(request, ranked).value
            return explain
        finally:
            await router.aclose()

    print(_dump(asyncio.run(_explain()), args.format))
    return 0


def cmd_route(args: argparse.Namespace) -> int:
    config = _load_config(args)
    prompt = args.prompt
    if args.prompt_file:
        prompt = Path(args.prompt_file).read_text(encoding="utf-8")
    if not prompt:
        raise ValueError("Provide --prompt or --prompt-file.")

    async def _route() -> dict[str, Any]:
        router = build_router(config, settings=get_settings())
        try:
            result = await router.route(_request_from_args(args, payload=prompt))
            return result.as_dict()
        finally:
            await router.aclose()

    try:
        payload = asyncio.run(_route())
    except RouterError as exc:
        error: dict[str, Any] = {"error": str(exc), "type": exc.__class__.__name__}
        failures = getattr(exc, "failures", None)
        if failures:
            error["failures"] = [failure.as_dict() for failure in failures]
        exclusions = getattr(exc, "exclusions", None)
        if exclusions:
            error["excluded"] = exclusions
        print(_dump(error, args.format))
        return 1

    print(_dump(payload, args.format))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ai-router",
        description="Inspect and exercise the AI request router.",
    )
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--format", default="yaml", choices=["yaml", "json"])
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_cmd = subparsers.add_parser(
        "validate-config", help="Validate a routing config file."
    )
    _add_config_path_argument(validate_cmd)
    validate_cmd.set_defaults(handler=cmd_validate_config)

    explain_cmd = subparsers.add_parser(
        "explain-route",
        help="Show the provider ranking for a preference vector without calling providers.",
    )
    _add_config_path_argument(explain_cmd)
    _add_request_arguments(explain_cmd)
    explain_cmd.set_defaults(handler=cmd_explain_route)

    route_cmd = subparsers.add_parser("route", help="Route a prompt to a provider.")
    _add_config_path_argument(route_cmd)
    _add_request_arguments(route_cmd)
    route_cmd.add_argument("--prompt", default=None)
    route_cmd.add_argument("--prompt-file", default=None)
    route_cmd.set_defaults(handler=cmd_route)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or get_settings().router_log_level)
    handler = cast(Callable[[argparse.Namespace], int], args.handler)

    try:
        return handler(args)
    except Exception as exc:  # pragma: no cover - covered via CLI tests
        parser.exit(2, f"error: {exc}\n")


if __name__ == "__main__":
    raise SystemExit(main())
