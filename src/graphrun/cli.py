"""CLI entry point for graphrun."""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import Any

from graphrun.config import Settings
from graphrun.core.context import RunContext
from graphrun.core.graph import Graph, GraphError
from graphrun.core.node import NodeExecutionError
from graphrun.core.runner import Runner
from graphrun.loader import load_graph
from graphrun.services.anthropic_chat import AnthropicModelService
from graphrun.services.base import StaticTokenProvider
from graphrun.services.platform import PlatformClient


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graphrun",
        description="Run typed workflow graphs",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run a graph document")
    run.add_argument("graph", help="Path to the graph document (.json, .yaml or .yml)")
    run.add_argument(
        "--input",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Initial input; VALUE is parsed as JSON when possible (repeatable)",
    )
    run.add_argument("--inputs-json", default=None, help="Initial inputs as a JSON object")
    run.add_argument(
        "--base-url", default=None, help="Platform base URL (default: $GRAPHRUN_BASE_URL)"
    )
    run.add_argument("--token", default=None, help="Access token (default: $GRAPHRUN_ACCESS_TOKEN)")
    run.add_argument(
        "--anthropic", action="store_true", help="Serve LLM nodes with the Anthropic API"
    )
    run.add_argument("--model", default=None, help="Anthropic model for --anthropic")
    run.add_argument(
        "--show-log", action="store_true", help="Print the execution log after the run"
    )

    inspect = sub.add_parser("inspect", help="Show a graph's start parameters and custom tools")
    inspect.add_argument("graph", help="Path to the graph document")

    return parser


def _parse_inputs(args: argparse.Namespace) -> dict[str, Any]:
    inputs: dict[str, Any] = {}
    if args.inputs_json:
        loaded = json.loads(args.inputs_json)
        if not isinstance(loaded, dict):
            raise ValueError("--inputs-json must be a JSON object")
        inputs.update(loaded)
    for item in args.input:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise ValueError(f"--input expects KEY=VALUE, got {item!r}")
        try:
            inputs[key] = json.loads(raw)
        except json.JSONDecodeError:
            inputs[key] = raw
    return inputs


def _print_log(ctx: RunContext) -> None:
    print("\nExecution log:")
    for entry in ctx.log:
        print(f"  [{entry.phase.value:>8}] {entry.node_kind}:{entry.node_id} {entry.message}")


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    graph = load_graph(args.graph)
    inputs = _parse_inputs(args)

    base_url = args.base_url or settings.base_url
    token = args.token or settings.access_token
    token_provider = StaticTokenProvider(token) if token else None
    platform = None
    if base_url:
        platform = PlatformClient(
            base_url, token_provider=token_provider, timeout=settings.http_timeout
        )
    model_service = platform
    if args.anthropic:
        model_service = AnthropicModelService(model=args.model or settings.model)

    ctx = RunContext(
        base_url=base_url,
        token_provider=token_provider,
        model_service=model_service,
        tool_invoker=platform,
        retrieval_service=platform,
        transform_service=platform,
    )

    print(f"Graph: {args.graph} ({len(graph)} nodes)")
    try:
        result = await Runner().run(graph, ctx, inputs)
    except NodeExecutionError as e:
        print(f"\nRun failed: {e}", file=sys.stderr)
        if args.show_log:
            _print_log(ctx)
        return 1
    finally:
        if platform is not None:
            await platform.aclose()

    if result is None:
        print("\nNo end node was reached.")
    else:
        print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    if args.show_log:
        _print_log(ctx)
    return 0


def _inspect(args: argparse.Namespace) -> int:
    graph: Graph = load_graph(args.graph)
    print(f"Graph: {args.graph} ({len(graph)} nodes)")
    print("\nStart parameters:")
    print(json.dumps(graph.start_params(), indent=2, ensure_ascii=False))
    tools = graph.custom_tools()
    print(f"\nCustom tools: {len(tools)}")
    for tool in tools:
        print(json.dumps(asdict(tool), indent=2, ensure_ascii=False))
    return 0


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    try:
        if args.command == "run":
            code = asyncio.run(_run(args, Settings()))
        elif args.command == "inspect":
            code = _inspect(args)
        else:
            parser.print_help()
            code = 1
    except (GraphError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 2
    sys.exit(code)
