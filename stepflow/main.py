"""Command line entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from stepflow import __version__
from stepflow.core.action_types import ActionType
from stepflow.core.errors import StepflowError, ValidationError
from stepflow.core.models import ScriptDocument
from stepflow.services.graph_editor import add_step, validate_document
from stepflow.services.scenario_engine import start
from stepflow.services.steps.base import ExecutionSettings, RunReport, RunStatus
from stepflow.storage.db import (
    CAMOUFOX_DEFAULTS,
    EXECUTION_DEFAULTS,
    db_get_camoufox_defaults,
    db_get_execution_defaults,
    db_set_camoufox_defaults,
    db_set_execution_defaults,
    db_get_script,
    db_get_scripts,
    init_db,
    load_script_file,
    save_script_file,
)
from stepflow.utils.run_logging import configure_logging

LOGGER = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    cli = argparse.ArgumentParser(prog="stepflow", description="Browser automation scripts")
    cli.add_argument("--version", action="version", version=f"stepflow {__version__}")
    cli.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = cli.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List stored scripts")

    validate_cmd = sub.add_parser("validate", help="Validate a script document")
    validate_cmd.add_argument("file", type=Path)

    run_cmd = sub.add_parser("run", help="Run a script in a Camoufox profile")
    run_cmd.add_argument("script", help="Path to a script file or the name of a stored script")
    run_cmd.add_argument("--profile", default="default", help="Browser profile name (default: default)")
    run_cmd.add_argument("--headless", action="store_true", help="Run the browser headless")
    run_cmd.add_argument(
        "--var",
        dest="variables",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Seed a variable; values are parsed as JSON when possible",
    )

    config_cmd = sub.add_parser("config", help="Show or change stored run and browser defaults")
    config_cmd.add_argument("section", choices=["execution", "browser"])
    config_cmd.add_argument(
        "--set",
        dest="updates",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Store a default; values are parsed as JSON when possible",
    )

    add_cmd = sub.add_parser("add-step", help="Append a step with default config to a script file")
    add_cmd.add_argument("file", type=Path)
    add_cmd.add_argument("type", choices=[a.value for a in ActionType])
    add_cmd.add_argument(
        "--path",
        action="append",
        default=[],
        metavar="PARENT_ID:BRANCH",
        help="Nested list to add into, outermost first (branch: thenSteps, elseSteps or body)",
    )
    return cli


def parse_variables(pairs: List[str]) -> Dict[str, Any]:
    variables: Dict[str, Any] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name.strip():
            raise SystemExit(f"Invalid --var {pair!r}, expected NAME=VALUE")
        try:
            value: Any = json.loads(raw)
        except ValueError:
            value = raw
        variables[name.strip()] = value
    return variables


def parse_path(items: List[str]) -> List[Tuple[str, str]]:
    path: List[Tuple[str, str]] = []
    for item in items:
        parent, sep, branch = item.rpartition(":")
        if not sep or not parent or not branch:
            raise SystemExit(f"Invalid --path {item!r}, expected PARENT_ID:BRANCH")
        path.append((parent, branch))
    return path


def _load_document(ref: str) -> ScriptDocument:
    candidate = Path(ref)
    if candidate.exists():
        return load_script_file(candidate)
    document = db_get_script(ref)
    if document is None:
        raise SystemExit(f"Script {ref} not found")
    return document


async def _run_for_profile(
    document: ScriptDocument,
    profile: str,
    *,
    headless: bool,
    settings: ExecutionSettings,
    variables: Dict[str, Any],
) -> RunReport:
    from stepflow.core.browser_interface import CamoufoxSession

    session = CamoufoxSession(profile, headless=headless)
    transport = await session.open_transport()
    try:
        handle = start(document, transport, settings=settings, variables=variables)
        return await handle.wait()
    finally:
        await transport.close()


def _print_report(report: RunReport) -> None:
    print(f"Run {report.run_id}: {report.status.value}")
    print(f"  steps: {report.completed_steps}/{report.total_steps}, attempts: {report.attempts}")
    if report.error:
        print(f"  error ({report.error_type}) at {report.failed_step_id}: {report.error}")
    for path in report.screenshots:
        print(f"  screenshot: {path}")
    if report.variables:
        print("  variables: " + json.dumps(report.variables, ensure_ascii=False, default=str))


def main(argv: Optional[List[str]] = None) -> None:
    cli = build_cli_parser()
    args = cli.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.command == "list":
        init_db()
        for document in db_get_scripts():
            print(f"{document.name}\t{document.id}\t{len(document.steps)} steps")
        return

    if args.command == "validate":
        try:
            payload = json.loads(args.file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SystemExit(f"{args.file}: {exc}") from exc
        errors = validate_document(payload) if isinstance(payload, dict) else ["document must be a JSON object"]
        if errors:
            for message in errors:
                print(message)
            raise SystemExit(1)
        print(f"{args.file}: OK")
        return

    if args.command == "config":
        init_db(seed_sample=False)
        if args.section == "execution":
            getter, setter, known = db_get_execution_defaults, db_set_execution_defaults, EXECUTION_DEFAULTS
        else:
            getter, setter, known = db_get_camoufox_defaults, db_set_camoufox_defaults, CAMOUFOX_DEFAULTS
        updates = parse_variables(args.updates)
        unknown = sorted(set(updates) - set(known))
        if unknown:
            raise SystemExit(f"Unknown {args.section} setting(s): {', '.join(unknown)}")
        if updates:
            merged = dict(getter())
            merged.update(updates)
            if args.section == "execution":
                try:
                    ExecutionSettings.from_mapping(merged)
                except ValueError as exc:
                    raise SystemExit(str(exc)) from exc
            setter(updates)
        print(json.dumps(getter(), ensure_ascii=False, indent=2))
        return

    if args.command == "add-step":
        try:
            document = load_script_file(args.file)
            document.steps, step_id = add_step(document.steps, parse_path(args.path), args.type)
        except StepflowError as exc:
            raise SystemExit(str(exc)) from exc
        save_script_file(args.file, document)
        print(step_id)
        return

    if args.command == "run":
        init_db(seed_sample=False)
        defaults = db_get_execution_defaults()
        try:
            settings = ExecutionSettings.from_mapping(defaults)
            document = _load_document(args.script)
        except (ValueError, ValidationError) as exc:
            raise SystemExit(str(exc)) from exc
        headless = bool(args.headless or defaults.get("headless"))
        report = asyncio.run(
            _run_for_profile(
                document,
                args.profile,
                headless=headless,
                settings=settings,
                variables=parse_variables(args.variables),
            )
        )
        _print_report(report)
        if report.status is not RunStatus.COMPLETED:
            raise SystemExit(1)
        return

    cli.error(f"Unknown command {args.command}")


if __name__ == "__main__":
    main(sys.argv[1:])
