#!/usr/bin/env python3
# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Command line interface for pg_timeout.

Commands:
- run: start the supervisor, which runs and restarts the worker
- worker: run the monitor worker in this process
- check-config: validate configuration and print effective values
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import ConfigError, load_config
from .state import ExitCode
from .supervisor import WorkerSupervisor
from .worker import register_worker, setup_logging, worker_main

logger = logging.getLogger(__name__)


def cmd_run(args: argparse.Namespace) -> int:
    setup_logging()
    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
        return int(ExitCode.CONFIG)
    logging.getLogger().setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))

    supervisor = WorkerSupervisor()
    if register_worker(supervisor, config, args.config) is None:
        return 0
    return supervisor.run()


def cmd_worker(args: argparse.Namespace) -> int:
    return worker_main(args.config)


def cmd_check_config(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return int(ExitCode.CONFIG)

    print(f"source: {config.source or '(defaults)'}")
    print(f"pg_timeout.naptime = {config.timeouts.naptime}")
    if config.worker.preload:
        print(f"pg_timeout.idle_session_timeout = {config.timeouts.idle_session_timeout}")
    else:
        print("pg_timeout.idle_session_timeout = (not defined, worker.preload is false)")
    print(f"database = {config.database.dbname} on {config.database.host or 'default host'}:{config.database.port}")
    print(f"worker = {config.worker.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pg-timeout",
        description="Terminate PostgreSQL sessions that stay idle too long",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, func, help_text in (
        ("run", cmd_run, "Run the supervisor and the monitor worker"),
        ("worker", cmd_worker, "Run the monitor worker in the foreground"),
        ("check-config", cmd_check_config, "Validate configuration and print effective values"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--config", "-c",
            type=Path,
            default=None,
            help="Configuration file or directory (default: search standard locations)",
        )
        sub.set_defaults(func=func)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
