"""CLI entry point for prompt-relay.

Thin host around the model manager and completion client, for terminal
use and scripting.

Entry point:
    prompt-relay models [--json] [--refresh] [--images]
    prompt-relay status
    prompt-relay params [--temperature T] [--top-p P] [--model M]
    prompt-relay chat MESSAGE [--model M] [--no-stream]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# ARGUMENT PARSING
# ─────────────────────────────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prompt-relay",
        description="Model discovery and chat completions for OpenAI-compatible providers.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    sub = parser.add_subparsers(dest="command")

    # models
    models_p = sub.add_parser("models", help="List available models")
    models_p.add_argument(
        "--json", action="store_true", dest="json_output",
        help="Full JSON output (models, source, reason)",
    )
    models_p.add_argument("--refresh", action="store_true", help="Bypass the discovery cache")
    models_p.add_argument("--images", action="store_true", help="List image-generation models")

    # status
    sub.add_parser("status", help="Show discovery status and cache info")

    # params
    params_p = sub.add_parser("params", help="Show or validate sampling parameters")
    params_p.add_argument("--temperature", type=float, default=None, help="Temperature to validate")
    params_p.add_argument("--top-p", type=float, default=None, dest="top_p", help="Top-p to validate")
    params_p.add_argument("--model", default=None, help="Model whose limits apply")

    # chat
    chat_p = sub.add_parser("chat", help="Send one message")
    chat_p.add_argument("message", help="User message")
    chat_p.add_argument("--model", default=None, help="Model ID (default: chat role default)")
    chat_p.add_argument("--no-stream", action="store_true", help="Wait for the whole response")

    return parser


# ─────────────────────────────────────────────────────────────────────
# WIRING
# ─────────────────────────────────────────────────────────────────────


def _build_manager():
    from prompt_relay import state
    from prompt_relay.config import get_api_base, get_data_path, load_settings_from_env
    from prompt_relay.discovery import ModelDiscoveryService
    from prompt_relay.manager import ModelManager
    from prompt_relay.storage import JsonFileStore

    settings = load_settings_from_env()
    discovery = ModelDiscoveryService(
        settings, JsonFileStore(get_data_path()), api_base=get_api_base()
    )
    manager = ModelManager(settings, discovery, registry=state.registry)
    manager.initialize()
    return manager


# ─────────────────────────────────────────────────────────────────────
# COMMANDS
# ─────────────────────────────────────────────────────────────────────


async def _cmd_models(
    json_output: bool = False,
    refresh: bool = False,
    images: bool = False,
) -> int:
    """List available models. Returns exit code."""
    from prompt_relay.config import ModelUpdateOptions

    manager = _build_manager()
    if not refresh:
        await manager.maybe_auto_update()
    if images:
        selection = await manager.resolve_image_generation_models()
    else:
        selection = await manager.resolve_available_models(
            ModelUpdateOptions(force_refresh=refresh)
        )

    if json_output:
        json.dump(selection.model_dump(mode="json"), sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        for model in selection.models:
            roles = f"  [{', '.join(model.default_for_roles)}]" if model.default_for_roles else ""
            print(f"{model.id}{roles}")
        if selection.reason:
            print(f"\nUsing static models ({selection.reason})", file=sys.stderr)
    return 0


async def _cmd_status() -> int:
    manager = _build_manager()
    status = await manager.get_discovery_status()
    cache = manager.get_discovery_service().get_cache_info()
    json.dump(
        {"discovery": status.model_dump(mode="json"), "cache": cache.model_dump(mode="json")},
        sys.stdout,
        indent=2,
    )
    sys.stdout.write("\n")
    return 0 if status.working or not status.enabled else 1


async def _cmd_params(
    temperature: Optional[float],
    top_p: Optional[float],
    model: Optional[str],
) -> int:
    manager = _build_manager()
    info = await manager.get_parameter_display_info()
    print(f"Temperature: {info.temperature}")
    print(f"Top P: {info.top_p}")

    if temperature is None and top_p is None:
        return 0

    settings = manager.settings
    report = await manager.validate_parameters(
        temperature if temperature is not None else settings.temperature,
        top_p if top_p is not None else settings.top_p,
        model,
    )
    code = 0
    for check in (report.temperature, report.top_p):
        if not check.is_valid:
            print(f"Warning: {check.warning}", file=sys.stderr)
            code = 1
    return code


async def _cmd_chat(message: str, model: Optional[str], no_stream: bool) -> int:
    from prompt_relay.adapters.completion import ClientConfig, StreamingCompletionClient
    from prompt_relay.adapters.schema import ConversationRequest
    from prompt_relay.config import get_api_base
    from prompt_relay.errors import RelayError

    manager = _build_manager()
    settings = manager.settings
    client = StreamingCompletionClient(
        ClientConfig.from_settings(settings, api_base=get_api_base()),
        registry=manager.registry,
    )
    request = ConversationRequest(user_message=message, model=model)

    try:
        if no_stream or not settings.streaming_enabled:
            response = await client.generate_model_response(request)
            print(response.markdown)
        else:
            def on_chunk(chunk):
                sys.stdout.write(chunk.text)
                sys.stdout.flush()

            stream = client.generate_streaming_response(request, on_chunk)
            response = await stream.complete()
            sys.stdout.write("\n")
    except RelayError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for tool_call in response.tool_calls or []:
        print(f"Tool call: {tool_call.name} {json.dumps(tool_call.arguments)}", file=sys.stderr)
    return 0


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────


def main():
    parser = _build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(message)s", stream=sys.stderr)

    # Load env
    from dotenv import load_dotenv
    load_dotenv()

    # Dispatch
    if args.command == "models":
        code = asyncio.run(_cmd_models(
            json_output=args.json_output,
            refresh=args.refresh,
            images=args.images,
        ))
    elif args.command == "status":
        code = asyncio.run(_cmd_status())
    elif args.command == "params":
        code = asyncio.run(_cmd_params(args.temperature, args.top_p, args.model))
    elif args.command == "chat":
        code = asyncio.run(_cmd_chat(args.message, args.model, args.no_stream))
    else:
        parser.print_help()
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
