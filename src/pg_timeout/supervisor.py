# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Supervisor for the pg_timeout worker process.

Launches the registered worker as a child process, forwards shutdown and
reload signals to it, and restarts it after it exits with a non-zero
status, waiting restart_interval seconds first.

Exit status 0 from the worker means it is done and it is not restarted.
"""

import logging
import signal
import subprocess
import time
from typing import Callable, Optional

from .latch import Latch
from .state import ExitCode
from .worker import WorkerRegistration

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5
STOP_TIMEOUT = 10.0


class WorkerSupervisor:
    """Runs and restarts one registered worker."""

    def __init__(
        self,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = POLL_INTERVAL,
        stop_timeout: float = STOP_TIMEOUT,
    ):
        """
        Initialize supervisor.

        Args:
            popen: Process factory (subprocess.Popen compatible)
            clock: Monotonic clock
            poll_interval: Seconds between child status checks
            stop_timeout: Seconds to wait for the worker after SIGTERM before SIGKILL
        """
        self._popen = popen
        self._clock = clock
        self.poll_interval = poll_interval
        self.stop_timeout = stop_timeout
        self.latch = Latch()
        self.registration: Optional[WorkerRegistration] = None
        self.child: Optional[subprocess.Popen] = None
        self.next_start = 0.0
        self.starts = 0
        self.stop_requested = False
        self.reload_requested = False
        self.done = False

    def register(self, registration: WorkerRegistration) -> None:
        """
        Register the worker to run.

        Raises:
            RuntimeError: If a worker is already registered
        """
        if self.registration is not None:
            raise RuntimeError(f"Worker already registered: {self.registration.name}")
        self.registration = registration
        logger.info(
            f"Registered worker {registration.name} (type {registration.type}, "
            f"restart interval {registration.restart_interval}s)"
        )

    def _install_signal_handlers(self) -> None:
        def request_stop(signum, frame):
            self.stop_requested = True
            self.latch.set()

        def request_reload(signum, frame):
            self.reload_requested = True
            self.latch.set()

        signal.signal(signal.SIGTERM, request_stop)
        signal.signal(signal.SIGINT, request_stop)
        signal.signal(signal.SIGHUP, request_reload)

    def run(self) -> int:
        """
        Supervise the worker until stopped.

        Returns:
            Process exit code for the supervisor
        """
        if self.registration is None:
            raise RuntimeError("No worker registered")

        self._install_signal_handlers()
        logger.info(f"Supervisor started for {self.registration.name}")
        try:
            while self.step():
                pass
        finally:
            self.latch.close()
        logger.info("Supervisor stopped")
        return 0

    def step(self) -> bool:
        """
        One supervision iteration.

        Returns:
            False once the supervisor should exit
        """
        if self.stop_requested:
            self._stop_child()
            return False

        if self.reload_requested:
            self.reload_requested = False
            if self.child is not None and self.child.poll() is None:
                logger.info(f"Forwarding reload to {self.registration.name} (pid {self.child.pid})")
                self.child.send_signal(signal.SIGHUP)

        if self.child is None:
            delay = self.next_start - self._clock()
            if delay > 0:
                self._wait(min(delay, self.poll_interval))
                return True
            self._spawn()
        else:
            returncode = self.child.poll()
            if returncode is not None:
                self._handle_exit(returncode)
                if self.done:
                    return False

        self._wait(self.poll_interval)
        return True

    def _spawn(self) -> None:
        self.child = self._popen(self.registration.command)
        self.starts += 1
        logger.info(f"Started {self.registration.name} (pid {self.child.pid})")

    def _handle_exit(self, returncode: int) -> None:
        name = self.registration.name
        pid = self.child.pid
        self.child = None

        if returncode == ExitCode.DONE:
            logger.info(f"{name} (pid {pid}) finished, not restarting")
            self.done = True
            return

        interval = self.registration.restart_interval
        self.next_start = self._clock() + interval
        logger.warning(f"{name} (pid {pid}) exited with status {returncode}, restarting in {interval}s")

    def _stop_child(self) -> None:
        if self.child is None or self.child.poll() is not None:
            return

        name = self.registration.name
        logger.info(f"Stopping {name} (pid {self.child.pid})")
        self.child.send_signal(signal.SIGTERM)
        try:
            self.child.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"{name} did not stop within {self.stop_timeout}s, killing")
            self.child.kill()
            self.child.wait()

    def _wait(self, timeout: float) -> None:
        self.latch.wait(timeout)
        self.latch.reset()
