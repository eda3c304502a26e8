"""Command-line interface for BlockFlow.

Commands:
- `run <flow.json>`: execute a saved flow and print the run result as JSON
- `validate <flow.json>`: check a flow for structural errors
- `serve`: run the visual editor backend (FastAPI)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
import sys
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from . import config
from .core.results import format_results
from .errors import StructuralError
from .runner import FlowRunner
from .visual.models import VisualFlow


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="blockflow", add_help=True)
    p.add_argument("--log-level", default=config.resolve_log_level(), help="Logging level (default: LOG_LEVEL or info)")
    sub = p.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Execute a flow JSON file")
    run.add_argument("flow", help="Path to a VisualFlow JSON file (e.g., ./flows/<id>.json)")
    run.add_argument(
        "--var",
        action="append",
        default=None,
        metavar="NAME=VALUE",
        help="Initial variable (repeatable)",
    )
    run.add_argument("--text", action="store_true", help="Print a plain-text report instead of JSON")

    val = sub.add_parser("validate", help="Check a flow JSON file for structural errors")
    val.add_argument("flow", help="Path to a VisualFlow JSON file")

    serve = sub.add_parser("serve", help="Run the Visual Editor backend (FastAPI)")
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (dev)")
    serve.add_argument("--flows-dir", default=None, help="Directory for saved flows (default: BLOCKFLOW_FLOWS_DIR or ./flows)")

    return p


def _load_flow(path: str) -> VisualFlow:
    raw = Path(path).read_text(encoding="utf-8")
    return VisualFlow.model_validate(json.loads(raw))


def _parse_vars(items: Optional[List[str]]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in items or []:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Invalid --var '{item}' (expected NAME=VALUE)")
        out[name.strip()] = value
    return out


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(args: Optional[List[str]] = None) -> int:
    if args is None:
        args = sys.argv[1:]

    parser = _build_parser()
    ns = parser.parse_args(args)
    _configure_logging(ns.log_level)

    if ns.command in ("run", "validate"):
        try:
            flow = _load_flow(ns.flow)
        except OSError as e:
            sys.stderr.write(f"Cannot read {ns.flow}: {e}\n")
            return 2
        except (ValueError, PydanticValidationError) as e:
            sys.stderr.write(f"Invalid flow JSON in {ns.flow}: {e}\n")
            return 2

        if ns.command == "validate":
            runner = FlowRunner(flow)
            try:
                runner.extract()
            except StructuralError as e:
                sys.stdout.write(str(e) + "\n")
                return 1
            for w in runner.warnings:
                sys.stdout.write(f"warning: {w}\n")
            sys.stdout.write("Flow is valid\n")
            return 0

        try:
            variables = _parse_vars(ns.var)
        except ValueError as e:
            parser.error(str(e))
        result = asyncio.run(FlowRunner(flow).run(variables))
        if ns.text:
            sys.stdout.write((result.error or format_results(result.results)) + "\n")
        else:
            sys.stdout.write(json.dumps(result.model_dump(by_alias=True), indent=2, ensure_ascii=False) + "\n")
        return 0 if result.success else 1

    if ns.command == "serve":
        import uvicorn

        if ns.flows_dir:
            os.environ["BLOCKFLOW_FLOWS_DIR"] = str(ns.flows_dir)

        uvicorn.run(
            "web.backend.main:app",
            host=str(ns.host),
            port=int(ns.port),
            reload=bool(ns.reload),
            log_level=str(ns.log_level).lower(),
        )
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
