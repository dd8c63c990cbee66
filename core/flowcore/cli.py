"""
Command-line interface for flowcore.

Usage:
    flowcore run workflow.json --input '{"ticket": "printer on fire"}'
    flowcore run workflow.json --input-file payload.json --model openai/gpt-4o-mini
    flowcore validate workflow.json
    flowcore serve --port 8080

``run`` prints the NDJSON progress stream to stdout; logs go to stderr.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from flowcore.config import EngineConfig, get_default_model
from flowcore.graph.definition import WorkflowDefinition
from flowcore.graph.executor import WorkflowExecutor
from flowcore.llm.litellm import LiteLLMProvider
from flowcore.llm.mock import MockLLMProvider
from flowcore.llm.provider import LLMProvider
from flowcore.observability import configure_logging
from flowcore.runtime.stream import stream_workflow


def _parse_input(raw: str | None) -> Any:
    """JSON when it parses, otherwise the raw text."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _load_definition(path: str) -> WorkflowDefinition:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    # Accept exported workflows that wrap the graph as {"definition": {...}}
    if isinstance(data, dict) and isinstance(data.get("definition"), dict):
        data = data["definition"]
    definition = WorkflowDefinition.model_validate(data)
    if definition.id == "workflow":
        definition.id = Path(path).stem
    return definition


def _build_llm(args: argparse.Namespace) -> LLMProvider:
    if args.mock_response is not None:
        return MockLLMProvider(default=args.mock_response)
    return LiteLLMProvider(model=args.model or get_default_model())


def cmd_run(args: argparse.Namespace) -> int:
    """Execute a workflow and stream its progress."""
    try:
        definition = _load_definition(args.definition)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"Error: cannot load {args.definition}: {e}", file=sys.stderr)
        return 1

    if args.input_file:
        input_data = _parse_input(Path(args.input_file).read_text(encoding="utf-8"))
    else:
        input_data = _parse_input(args.input)

    executor = WorkflowExecutor(llm=_build_llm(args), config=EngineConfig())

    async def run() -> bool:
        success = False
        async for line in stream_workflow(
            executor,
            definition,
            input_data,
            company_id=args.company_id,
            employee_id=args.employee_id,
        ):
            sys.stdout.write(line)
            sys.stdout.flush()
            event = json.loads(line)
            if event["type"] == "final":
                success = bool(event["result"]["success"])
        return success

    return 0 if asyncio.run(run()) else 1


def cmd_validate(args: argparse.Namespace) -> int:
    """Check a definition for graph errors without running it."""
    try:
        definition = _load_definition(args.definition)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"Error: cannot load {args.definition}: {e}", file=sys.stderr)
        return 1

    errors = definition.validate()
    if errors:
        for error in errors:
            print(f"  ✗ {error}")
        return 1

    unreachable = definition.unreachable_nodes()
    print(f"✓ {definition.id}: {len(definition.nodes)} nodes, {len(definition.edges)} edges")
    if unreachable:
        print(f"  Unreachable (will be skipped): {', '.join(unreachable)}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP server until interrupted."""
    from flowcore.runtime.stream_server import WorkflowServer, WorkflowServerConfig

    async def serve() -> None:
        executor = WorkflowExecutor(llm=_build_llm(args), config=EngineConfig())
        server = WorkflowServer(executor, WorkflowServerConfig(host=args.host, port=args.port))
        await server.start()
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass
    return 0


def _add_llm_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--model",
        default=None,
        help="litellm model string (default: configured model)",
    )
    parser.add_argument(
        "--mock-response",
        default=None,
        help="Answer every LLM call with this text instead of calling a model",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="flowcore",
        description="flowcore - Execute AI employee workflows",
    )
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "json", "human"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Execute a workflow definition")
    run_parser.add_argument("definition", help="Path to the definition JSON")
    run_parser.add_argument("--input", default=None, help="Trigger input (JSON or text)")
    run_parser.add_argument("--input-file", default=None, help="Read trigger input from file")
    run_parser.add_argument("--company-id", default="", help="Company the run acts for")
    run_parser.add_argument("--employee-id", default="", help="Employee the run acts for")
    _add_llm_options(run_parser)
    run_parser.set_defaults(func=cmd_run)

    validate_parser = subparsers.add_parser("validate", help="Validate a workflow definition")
    validate_parser.add_argument("definition", help="Path to the definition JSON")
    validate_parser.set_defaults(func=cmd_validate)

    serve_parser = subparsers.add_parser("serve", help="Serve test runs over HTTP")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8080)
    _add_llm_options(serve_parser)
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
