# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Idle session monitor loop.

Wakes every naptime seconds, lists sessions that have been idle longer
than idle_session_timeout, logs each one and terminates them. One short
transaction per cycle; no transaction is held across a wait.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from .config import ConfigStore
from .latch import Latch, OwnerWatch, WakeEvent
from .metrics import CycleMetrics
from .queries import build_queries
from .state import ExitCode, WorkerAbort, WorkerState
from .status import ActivityReporter, STATE_IDLE, STATE_RUNNING

logger = logging.getLogger(__name__)

NULL_PLACEHOLDER = "NULL"


@dataclass
class SessionRecord:
    """One idle session as returned by the select statement."""
    session_id: int
    user: str = NULL_PLACEHOLDER
    database: str = NULL_PLACEHOLDER
    application_name: str = NULL_PLACEHOLDER
    client_hostname: str = NULL_PLACEHOLDER

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> Optional['SessionRecord']:
        """
        Build a record from a registry row.

        Args:
            row: (pid, usename, datname, application_name, client_hostname)

        Returns:
            SessionRecord, or None when pid is NULL
        """
        pid, user, database, application_name, client_hostname = row
        if pid is None:
            return None
        return cls(
            session_id=int(pid),
            user=_text(user),
            database=_text(database),
            application_name=_text(application_name),
            client_hostname=_text(client_hostname),
        )


def _text(value: Any) -> str:
    return NULL_PLACEHOLDER if value is None else str(value)


@dataclass
class CycleResult:
    """Outcome of one monitor cycle."""
    timeout: int
    found: int = 0
    skipped: int = 0
    terminated: int = 0
    terminate_issued: bool = False
    duration: float = 0.0


class MonitorLoop:
    """
    The poll-act loop of the pg_timeout worker.

    Runs until a shutdown is requested or the owner process dies.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        registry,
        latch: Latch,
        state: WorkerState,
        worker_name: str = "pg_timeout_worker",
        owner: Optional[OwnerWatch] = None,
        activity: Optional[ActivityReporter] = None,
        metrics: Optional[CycleMetrics] = None,
        emergency_exit: Callable[[int], Any] = os._exit,
    ):
        """
        Initialize monitor loop.

        Args:
            config_store: Source of naptime and idle_session_timeout
            registry: Session registry (PostgresSessionRegistry or compatible)
            latch: Latch the signal handlers set
            state: Flags the signal handlers write
            worker_name: Name used as prefix of every log line
            owner: Owner process watch (None disables owner death detection)
            activity: Activity reporter (created if not provided)
            metrics: Cycle metrics (created if not provided)
            emergency_exit: Called with the exit code on owner death
        """
        self.config_store = config_store
        self.registry = registry
        self.latch = latch
        self.state = state
        self.worker_name = worker_name
        self.owner = owner
        self.activity = activity or ActivityReporter(worker_name)
        self.metrics = metrics or CycleMetrics()
        self._emergency_exit = emergency_exit

    def run(self) -> ExitCode:
        """
        Run cycles until told to stop.

        Returns:
            ExitCode.SHUTDOWN once a shutdown request is observed

        Raises:
            WorkerAbort: On a registry query fault
        """
        while True:
            events = self.latch.wait(self.config_store.current().naptime, self.owner)
            self.latch.reset()

            # Emergency bailout, nothing else runs
            if events & WakeEvent.OWNER_DEATH:
                self._emergency_exit(int(ExitCode.SHUTDOWN))
                return ExitCode.SHUTDOWN

            if self.state.shutdown_requested:
                logger.info(f"{self.worker_name}: shutdown requested, stopping")
                return ExitCode.SHUTDOWN

            if self.state.reload_requested:
                self.state.reload_requested = False
                self.config_store.reload()

            result = self.run_cycle()
            self.metrics.record_cycle(result)

    def run_cycle(self) -> CycleResult:
        """
        Run one select-log-terminate cycle inside a single transaction.

        Returns:
            CycleResult for this cycle

        Raises:
            WorkerAbort: If either statement fails
        """
        started = time.monotonic()

        # One snapshot of the timeout for both statements
        queries = build_queries(self.config_store.current().idle_session_timeout)
        result = CycleResult(timeout=queries.timeout)

        with self.registry.transaction():
            self.activity.report(STATE_RUNNING, queries.select_sql)

            selected = self.registry.select_idle(queries)
            if not selected.ok:
                self._abort("cannot select from pg_stat_activity", queries.select_sql, selected.error)

            for row in selected.rows:
                record = SessionRecord.from_row(row)
                if record is None:
                    logger.warning(f"{self.worker_name}: pid is NULL")
                    result.skipped += 1
                    continue

                result.found += 1
                logger.info(
                    f"{self.worker_name}: idle session PID={record.session_id} "
                    f"user={record.user} database={record.database} "
                    f"application={record.application_name} hostname={record.client_hostname}"
                )

            if selected.rows:
                self.activity.report(STATE_RUNNING, queries.terminate_sql)
                terminated = self.registry.terminate_idle(queries)
                if not terminated.ok:
                    self._abort("cannot select pg_terminate_backend", queries.terminate_sql, terminated.error)

                result.terminate_issued = True
                result.terminated = sum(1 for row in terminated.rows if row[0])
                logger.info(
                    f"{self.worker_name}: idle session(s) since {queries.timeout} seconds terminated"
                )

        self.activity.report(STATE_IDLE)
        result.duration = time.monotonic() - started
        return result

    def _abort(self, message: str, query: str, error: Optional[str]) -> None:
        logger.critical(f"{self.worker_name}: {message}: {error} [query: {query}]")
        raise WorkerAbort(ExitCode.FATAL)
