#!/usr/bin/env python3
# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the worker supervisor's start, restart and stop policy.
"""

import signal
import sys
from pathlib import Path

import pytest

# Add src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from pg_timeout.supervisor import WorkerSupervisor  # noqa: E402
from pg_timeout.worker import WorkerRegistration  # noqa: E402

from fakes import FakeProcess  # noqa: E402


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def processes():
    return []


@pytest.fixture
def supervisor(clock, processes):
    def popen(command):
        process = FakeProcess(pid=100 + len(processes))
        process.command = command
        processes.append(process)
        return process

    supervisor = WorkerSupervisor(popen=popen, clock=clock, poll_interval=0)
    supervisor.register(WorkerRegistration(
        name="pg_timeout_worker",
        type="pg_timeout",
        restart_interval=10,
        command=["python", "-m", "pg_timeout", "worker"],
    ))
    yield supervisor
    supervisor.latch.close()


class TestWorkerSupervisor:

    def test_register_only_once(self, supervisor):
        with pytest.raises(RuntimeError):
            supervisor.register(supervisor.registration)

    def test_run_requires_registration(self):
        supervisor = WorkerSupervisor()
        try:
            with pytest.raises(RuntimeError):
                supervisor.run()
        finally:
            supervisor.latch.close()

    def test_first_step_starts_worker(self, supervisor, processes):
        assert supervisor.step()
        assert len(processes) == 1
        assert processes[0].command == ["python", "-m", "pg_timeout", "worker"]

    def test_crashed_worker_restarted_after_interval(self, supervisor, processes, clock):
        supervisor.step()
        processes[0].returncode = 2

        assert supervisor.step()  # notices the exit
        assert supervisor.child is None

        clock.now += 9
        supervisor.step()
        assert len(processes) == 1

        clock.now += 1
        supervisor.step()
        assert len(processes) == 2
        assert supervisor.starts == 2

    def test_voluntary_shutdown_status_also_restarted(self, supervisor, processes, clock):
        supervisor.step()
        processes[0].returncode = 1
        supervisor.step()

        clock.now += 10
        supervisor.step()
        assert len(processes) == 2

    def test_clean_exit_not_restarted(self, supervisor, processes):
        supervisor.step()
        processes[0].returncode = 0

        assert not supervisor.step()
        assert supervisor.done
        assert len(processes) == 1

    def test_stop_forwards_sigterm(self, supervisor, processes):
        supervisor.step()
        supervisor.stop_requested = True

        assert not supervisor.step()
        assert processes[0].signals == [signal.SIGTERM]

    def test_reload_forwards_sighup(self, supervisor, processes):
        supervisor.step()
        supervisor.reload_requested = True

        assert supervisor.step()
        assert processes[0].signals == [signal.SIGHUP]
        assert not supervisor.reload_requested
