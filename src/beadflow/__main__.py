"""Entry point for `python -m beadflow` and the `beadflow` CLI script."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv

from beadflow.cancellation import touch_cancel_file
from beadflow.canonical import to_canonical_json
from beadflow.graph import ConfigurationError
from beadflow.lifecycle import IllegalTransitionError
from beadflow.models import BeadFilter
from beadflow.report import build_report, render_report
from beadflow.runner import Strategy, build_executor, load_graph, open_store, retry_bead, run_strategy
from beadflow.settings import RuntimeSettings
from beadflow.store import StoreError

EXIT_OK = 0
EXIT_UNFINISHED = 1
EXIT_CONFIG = 2


def _add_selection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--group", default=None, help="Only beads in this group / label")
    parser.add_argument("--parent", default=None, help="Only beads under this epic id")
    parser.add_argument("--json", action="store_true", help="Print canonical JSON instead of text")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drive beads to completion with a dependency-aware scheduler")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("run", help="Run the selected beads")
    p.add_argument("strategy", choices=[strategy.value for strategy in Strategy], help="Execution strategy")
    _add_selection_args(p)
    p.add_argument("--max-workers", type=int, default=None, help="Swarm pool size (default: BEADFLOW_MAX_WORKERS)")
    p.add_argument("--command", dest="worker_command", default=None, help="Shell command executed per bead")
    p.add_argument("--timeout", type=int, default=None, help="Seconds per bead before it is marked blocked")

    p = subparsers.add_parser("ready", help="List beads that are ready to run")
    _add_selection_args(p)

    p = subparsers.add_parser("report", help="Summarize bead status without running anything")
    _add_selection_args(p)

    p = subparsers.add_parser("retry", help="Return a blocked bead to pending")
    p.add_argument("bead_id")

    subparsers.add_parser("cancel", help="Ask a running scheduler to stop after in-flight beads")
    return parser


def _selection(args: argparse.Namespace) -> BeadFilter:
    return BeadFilter(group=args.group, parent_id=args.parent)


def cmd_run(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    if args.max_workers is not None and args.max_workers < 1:
        raise ValueError(f"--max-workers must be >= 1, got: {args.max_workers}")
    store = open_store(settings)
    execute = build_executor(settings, command=args.worker_command, timeout=args.timeout)
    report = asyncio.run(
        run_strategy(
            Strategy(args.strategy),
            store=store,
            execute=execute,
            settings=settings,
            bead_filter=_selection(args),
            max_workers=args.max_workers,
            handle_signals=True,
        )
    )
    print(to_canonical_json(report) if args.json else render_report(report))
    return EXIT_OK if report.success else EXIT_UNFINISHED


def cmd_ready(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    graph = load_graph(open_store(settings), _selection(args))
    ready = graph.ready()
    if args.json:
        print(to_canonical_json(ready))
    else:
        for bead in ready:
            print(f"{bead.id}\tp{bead.priority}\t{bead.kind.value}\t{bead.title}")
    return EXIT_OK


def cmd_report(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    report = build_report(load_graph(open_store(settings), _selection(args)), strategy="snapshot")
    print(to_canonical_json(report) if args.json else render_report(report))
    return EXIT_OK if report.success else EXIT_UNFINISHED


def cmd_retry(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    ready = retry_bead(open_store(settings), args.bead_id)
    print(f"{args.bead_id} is pending again{' and ready' if ready else ''}")
    return EXIT_OK


def cmd_cancel(_args: argparse.Namespace, settings: RuntimeSettings) -> int:
    touch_cancel_file(settings.cancel_path)
    print(f"Cancel requested via {settings.cancel_path}")
    return EXIT_OK


COMMANDS = {
    "run": cmd_run,
    "ready": cmd_ready,
    "report": cmd_report,
    "retry": cmd_retry,
    "cancel": cmd_cancel,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    env_path = Path.cwd() / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    try:
        settings = RuntimeSettings.from_env()
        if args.command == "run":
            # A stale flag from an earlier cancel must not stop this run.
            settings.cancel_path.unlink(missing_ok=True)
        return COMMANDS[args.command](args, settings)
    except ConfigurationError as exc:
        logging.error("Bead selection cannot be scheduled: %s", exc)
        return EXIT_CONFIG
    except (IllegalTransitionError, StoreError, ValueError) as exc:
        logging.error("%s", exc)
        return EXIT_CONFIG


if __name__ == "__main__":
    raise SystemExit(main())
