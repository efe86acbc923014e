# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Command line runner

    flowengine run workflow.yaml --input '{"query": "hello"}' --parallel

Prints the execution result as JSON. Exit code is 0 only when the run
completed.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from flowengine.core.config import reload_config
from flowengine.core.errors import FlowEngineError
from flowengine.core.logging import get_engine_logger, log_event
from flowengine.engine.models import WorkflowStatus
from flowengine.service import WorkflowEngineService

logger = get_engine_logger("cli")


def load_document(path: str) -> Dict[str, Any]:
    """Read a JSON or YAML file"""
    text = Path(path).read_text(encoding="utf-8")
    if path.endswith(".json"):
        return json.loads(text)
    return yaml.safe_load(text) or {}


def parse_input(value: Optional[str]) -> Dict[str, Any]:
    """--input accepts inline JSON or @path to a JSON/YAML file"""
    if not value:
        return {}
    if value.startswith("@"):
        return load_document(value[1:])
    data = json.loads(value)
    if not isinstance(data, dict):
        raise ValueError("--input must be a JSON object")
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flowengine", description="Run FlowEngine workflows")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Execute a workflow definition file")
    run.add_argument("workflow", help="Workflow definition (.json, .yaml)")
    run.add_argument("--input", help="Workflow input as JSON, or @file")
    run.add_argument("--mode", choices=["production", "draft"], default="production")
    run.add_argument("--timeout", type=int, help="Overall timeout in seconds")
    run.add_argument("--max-retries", type=int, help="Invocations per node")
    run.add_argument(
        "--strategy",
        choices=["fail_fast", "continue", "collect"],
        help="Error strategy for failed nodes",
    )
    run.add_argument("--parallel", action="store_true", default=None, help="Run independent nodes concurrently")
    run.add_argument("--ai-configs", help="AI provider configs as JSON/YAML file")
    run.add_argument("--config", help="Engine config YAML (default: configs/engine.yaml)")
    return parser


def build_options(args: argparse.Namespace) -> Dict[str, Any]:
    options: Dict[str, Any] = {"mode": args.mode}
    if args.timeout is not None:
        options["timeoutSeconds"] = args.timeout
    if args.max_retries is not None:
        options["maxRetries"] = args.max_retries
    if args.strategy:
        options["parallelErrorStrategy"] = args.strategy
    if args.parallel:
        options["enableParallelExecution"] = True
    return options


async def run_command(args: argparse.Namespace) -> int:
    definition = load_document(args.workflow)
    ai_configs = load_document(args.ai_configs) if args.ai_configs else None

    async with WorkflowEngineService() as service:
        result = await service.execute_workflow(
            definition,
            input=parse_input(args.input),
            options=build_options(args),
            ai_configs=ai_configs,
        )

    print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False))
    return 0 if result.status == WorkflowStatus.COMPLETED else 1


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    if args.config:
        os.environ["FLOWENGINE_CONFIG_PATH"] = args.config
        reload_config()

    try:
        return asyncio.run(run_command(args))
    except FlowEngineError as e:
        log_event(logger, "run_failed", level="ERROR", code=e.code, error=e.message)
        print(json.dumps(e.to_dict(), indent=2, ensure_ascii=False), file=sys.stderr)
        return 2
    except (OSError, ValueError) as e:
        print(f"flowengine: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
