"""Command line entry point: stream a chat or query a Fabric server.

Usage:
  fabric-client chat --vendor Gemini --model gemini-2.0-flash --pattern summarize "text"
  echo "text" | fabric-client chat --vendor Gemini --model gemini-2.0-flash
  fabric-client models
  fabric-client strategies
  fabric-client config
  fabric-client list patterns

Settings come from FABRIC_* environment variables and an optional YAML file
(--config); --url and --api-key override both.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import TYPE_CHECKING

from fabric_client.client import FabricClient
from fabric_client.config import get_settings
from fabric_client.core.errors import FabricError
from fabric_client.core.logging_config import setup_logging
from fabric_client.core.types import ChatOptions, ChatRequest, ErrorMessage, PromptRequest

if TYPE_CHECKING:
    from fabric_client.config.loader import Settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fabric-client", description="Fabric REST API client.")
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--url", help="Fabric server URL")
    parser.add_argument("--api-key", help="API key (prefer FABRIC_API_KEY)")
    sub = parser.add_subparsers(dest="command", required=True)

    chat = sub.add_parser("chat", help="stream a chat completion to stdout")
    chat.add_argument("input", nargs="?", help="user input; read from stdin when omitted")
    chat.add_argument("--vendor", required=True)
    chat.add_argument("--model", required=True)
    chat.add_argument("--pattern", default="")
    chat.add_argument("--context", default="")
    chat.add_argument("--strategy", default="")
    chat.add_argument("--language", default="en")
    chat.add_argument("--temperature", type=float, default=0.7)
    chat.add_argument("--top-p", type=float, default=0.9)
    chat.add_argument("--seed", type=int, default=0)
    chat.add_argument("--raw", action="store_true")

    sub.add_parser("models", help="list vendors and models")
    sub.add_parser("strategies", help="list strategies")
    sub.add_parser("config", help="show server config (keys are masked)")
    lst = sub.add_parser("list", help="list entity names")
    lst.add_argument("kind", choices=["patterns", "contexts", "sessions"])
    return parser


def _chat_request(args: argparse.Namespace, user_input: str) -> ChatRequest:
    return ChatRequest(
        prompts=[
            PromptRequest(
                user_input=user_input,
                vendor=args.vendor,
                model=args.model,
                context_name=args.context,
                pattern_name=args.pattern,
                strategy_name=args.strategy,
            )
        ],
        language=args.language,
        chat_options=ChatOptions(
            model=args.model,
            temperature=args.temperature,
            top_p=args.top_p,
            seed=args.seed,
            raw=args.raw,
        ),
    )


async def run_chat(client: FabricClient, request: ChatRequest) -> int:
    async with client.chat_stream(request) as stream:
        async for message in stream:
            if isinstance(message, ErrorMessage):
                print(f"error: {message.content}", file=sys.stderr)
                return 1
            if message.type == "content":
                sys.stdout.write(message.content)
                sys.stdout.flush()
    sys.stdout.write("\n")
    return 0


def _mask(value: str) -> str:
    return f"{value[:4]}..." if len(value) > 8 else ("***" if value else "")


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    async with FabricClient.from_settings(settings) as client:
        if args.command == "chat":
            user_input = args.input if args.input is not None else sys.stdin.read()
            return await run_chat(client, _chat_request(args, user_input))
        if args.command == "models":
            models = await client.list_models()
            print(json.dumps(models.vendors, indent=2))
        elif args.command == "strategies":
            for strategy in await client.list_strategies():
                print(f"{strategy.name}: {strategy.description}")
        elif args.command == "config":
            config = await client.get_config()
            print(json.dumps({k: _mask(v) for k, v in config.model_dump().items()}, indent=2))
        elif args.command == "list":
            listing = {
                "patterns": client.list_patterns,
                "contexts": client.list_contexts,
                "sessions": client.list_sessions,
            }[args.kind]
            for name in await listing():
                print(name)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings(args.config)
    if args.url:
        settings.server_url = args.url
    if args.api_key:
        settings.api_key = args.api_key
    setup_logging(settings.logging.level, use_json=settings.logging.json_format, stream=sys.stderr)
    try:
        return asyncio.run(run_command(args, settings))
    except FabricError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
