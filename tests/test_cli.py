#!/usr/bin/env python3
# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the pg-timeout command line interface.
"""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from pg_timeout.__main__ import main  # noqa: E402
from pg_timeout.state import ExitCode  # noqa: E402


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("PG_TIMEOUT_NAPTIME", "PG_TIMEOUT_IDLE_SESSION_TIMEOUT", "PG_TIMEOUT_CONFIG"):
        monkeypatch.delenv(name, raising=False)


class TestCheckConfig:

    def test_prints_effective_values(self, tmp_path, capsys):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("pg_timeout:\n  naptime: 3\n  idle_session_timeout: 45\n")

        assert main(["check-config", "--config", str(config_file)]) == 0

        out = capsys.readouterr().out
        assert "pg_timeout.naptime = 3" in out
        assert "pg_timeout.idle_session_timeout = 45" in out

    def test_invalid_config(self, tmp_path, capsys):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("pg_timeout:\n  idle_session_timeout: -1\n")

        assert main(["check-config", "--config", str(config_file)]) == ExitCode.CONFIG
        assert "Invalid configuration" in capsys.readouterr().err


class TestRun:

    @patch("pg_timeout.__main__.WorkerSupervisor")
    def test_run_registers_and_supervises(self, supervisor_cls, tmp_path):
        supervisor_cls.return_value.run.return_value = 0

        assert main(["run", "--config", str(tmp_path / "config.yaml")]) == 0

        supervisor_cls.return_value.register.assert_called_once()
        supervisor_cls.return_value.run.assert_called_once()

    @patch("pg_timeout.__main__.worker_main", return_value=1)
    def test_worker_command(self, worker_main, tmp_path):
        assert main(["worker", "--config", str(tmp_path)]) == 1
        worker_main.assert_called_once_with(tmp_path)

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])
