"""Command-line entrypoint.

Usage:
    deadline-escalator [--config escalator.yaml] run [--interval 50]
    deadline-escalator [--config escalator.yaml] check
    deadline-escalator [--config escalator.yaml] policies

Exit codes: 0 = ok, 1 = the check tick reported errors or config failed.
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path

import yaml

from deadline_escalator.config import EscalatorConfig, load_config
from deadline_escalator.context import SchedulerContext
from deadline_escalator.durations import parse_duration
from deadline_escalator.errors import EscalatorError
from deadline_escalator.handlers import describe_remaining

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deadline-escalator",
        description="Escalating reminders for tasks with deadlines",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("escalator.yaml"),
        help="Path to escalator.yaml (default: ./escalator.yaml)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Start the scheduler and block")
    run.add_argument(
        "--interval",
        default=None,
        help="Tick interval such as 50s or 2m; --interval=-5m ticks after 5m idle",
    )
    sub.add_parser("check", help="Run a single tick and print what fired")
    sub.add_parser("policies", help="List registered policies")
    return parser


def _load(path: Path) -> EscalatorConfig:
    if not path.is_file():
        logger.warning("Config not found at %s, using defaults", path)
        return EscalatorConfig()
    return load_config(path)


def _cmd_run(context: SchedulerContext, interval: int) -> int:
    stop = threading.Event()
    context.start(interval)
    try:
        stop.wait()
    except KeyboardInterrupt:
        pass
    finally:
        context.stop()
    return 0


def _cmd_check(context: SchedulerContext) -> int:
    report = context.tick()
    for event in report.fired:
        print(
            f"fired  {','.join(event.tier.actions):<32} {event.task.heading} "
            f"({describe_remaining(event.task.remaining(report.now))})"
        )
    for task, tier in report.suppressed:
        print(f"quiet  {tier.describe():<32} {task.heading}")
    for warning in report.drift:
        print(f"drift  {warning.ratio:.2f}x period  {warning.task.heading}")
    for error in report.errors:
        print(f"error  {error.task.heading}: {error.error}")
    for provider_error in report.provider_errors:
        print(f"error  {provider_error}")
    print(f"{report.task_count} tasks, {len(report.fired)} fired")
    return 0 if report.ok else 1


def _cmd_policies(context: SchedulerContext) -> int:
    for name in context.registry.names():
        print(name)
        for tier in context.registry.lookup(name):
            print(f"  {tier.describe()}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint for deadline-escalator."""
    args = _build_parser().parse_args(argv)

    try:
        config = _load(args.config)
    except (OSError, yaml.YAMLError, EscalatorError) as exc:
        print(f"Cannot load config {args.config}: {exc}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    context = SchedulerContext.from_config(config)

    if args.command == "run":
        try:
            interval = parse_duration(args.interval)
            return _cmd_run(
                context, interval if interval is not None else config.interval
            )
        except EscalatorError as exc:
            print(f"Cannot start scheduler: {exc}", file=sys.stderr)
            return 1
    if args.command == "check":
        return _cmd_check(context)
    return _cmd_policies(context)


if __name__ == "__main__":
    sys.exit(main())
