# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Lifecycle of the pg_timeout worker process.

Installs signal handlers, registers the worker with the supervisor,
connects to PostgreSQL and runs the monitor loop until shutdown.
"""

import logging
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import psycopg

from .config import ConfigError, ConfigStore, PgTimeoutConfig, load_config
from .latch import Latch, OwnerWatch, WakeEvent
from .metrics import CycleMetrics
from .monitor import MonitorLoop
from .registry import PostgresSessionRegistry
from .state import ExitCode, WorkerAbort, WorkerState
from .status import ActivityReporter

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def install_signal_handlers(state: WorkerState, latch: Latch) -> None:
    """
    Install SIGTERM/SIGINT (shutdown) and SIGHUP (reload) handlers.

    Handlers only set a flag and the latch. No I/O, no logging.
    """
    def request_shutdown(signum, frame):
        state.shutdown_requested = True
        latch.set()

    def request_reload(signum, frame):
        state.reload_requested = True
        latch.set()

    signal.signal(signal.SIGTERM, request_shutdown)
    signal.signal(signal.SIGINT, request_shutdown)
    signal.signal(signal.SIGHUP, request_reload)


@dataclass
class WorkerRegistration:
    """What the supervisor needs to know to run and restart the worker."""
    name: str
    type: str
    restart_interval: int
    start_time: str = "recovery_finished"
    command: List[str] = field(default_factory=list)


def build_registration(config: PgTimeoutConfig, config_path: Optional[Path] = None) -> WorkerRegistration:
    """
    Describe the worker process for the supervisor.

    The restart interval equals naptime: a crashed worker is not respawned
    more often than once per poll interval.
    """
    command = [sys.executable, "-m", "pg_timeout", "worker"]
    source = config_path or config.source
    if source is not None:
        command += ["--config", str(source)]
    return WorkerRegistration(
        name=config.worker.name,
        type=config.worker.type,
        restart_interval=config.timeouts.naptime,
        command=command,
    )


def register_worker(scheduler, config: PgTimeoutConfig,
                    config_path: Optional[Path] = None) -> Optional[WorkerRegistration]:
    """
    Register the worker with the scheduler once.

    Args:
        scheduler: Object with a register(WorkerRegistration) method
        config: Loaded configuration
        config_path: Configuration path passed on to the worker process

    Returns:
        The registration, or None when the worker is not preloaded
    """
    if not config.worker.preload:
        logger.info(
            f"{config.worker.name}: worker.preload is false, "
            f"pg_timeout.idle_session_timeout is not defined and no worker is registered"
        )
        return None

    registration = build_registration(config, config_path)
    scheduler.register(registration)

    logger.info(f"{registration.name} started with pg_timeout.naptime={config.timeouts.naptime} seconds")
    logger.info(
        f"{registration.name} started with "
        f"pg_timeout.idle_session_timeout={config.timeouts.idle_session_timeout} seconds"
    )
    return registration


def wait_for_recovery(registry, latch: Latch, state: WorkerState,
                      config_store: ConfigStore, owner: Optional[OwnerWatch] = None) -> bool:
    """
    Block until the server has finished recovery.

    Returns:
        True when monitoring can start, False if a shutdown was requested
        or the owner died while waiting
    """
    logged = False
    while registry.in_recovery():
        if not logged:
            logger.info("Server is in recovery, waiting before monitoring sessions")
            logged = True
        events = latch.wait(config_store.current().naptime, owner)
        latch.reset()
        if events & WakeEvent.OWNER_DEATH or state.shutdown_requested:
            return False
        if state.reload_requested:
            state.reload_requested = False
            config_store.reload()
    return True


def worker_main(config_path: Optional[Path] = None) -> int:
    """
    Entry point of the worker process.

    Returns:
        Process exit code (an ExitCode value)
    """
    setup_logging()

    # Handlers go in before anything that can block
    state = WorkerState()
    latch = Latch()
    install_signal_handlers(state, latch)

    try:
        config = load_config(config_path)
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
        return int(ExitCode.CONFIG)

    logging.getLogger().setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))

    name = config.worker.name
    config_store = ConfigStore(config)
    owner = OwnerWatch(config.worker.owner_pid)
    registry = PostgresSessionRegistry(config.database)
    metrics = CycleMetrics()

    try:
        registry.connect()
    except psycopg.Error as e:
        logger.error(f"{name}: cannot connect to PostgreSQL: {e}", exc_info=True)
        return int(ExitCode.FATAL)

    code = ExitCode.SHUTDOWN
    try:
        if wait_for_recovery(registry, latch, state, config_store, owner):
            logger.info(f"{name} initialized")
            loop = MonitorLoop(
                config_store=config_store,
                registry=registry,
                latch=latch,
                state=state,
                worker_name=name,
                owner=owner,
                activity=ActivityReporter(name, config.worker.status_file),
                metrics=metrics,
            )
            code = loop.run()
    except WorkerAbort as e:
        code = e.code
    except psycopg.Error as e:
        logger.critical(f"{name}: lost connection to PostgreSQL: {e}", exc_info=True)
        code = ExitCode.FATAL
    finally:
        registry.close()
        logger.info(f"Final cycle metrics: {metrics.get_stats()}")

    return int(code)
