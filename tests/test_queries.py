#!/usr/bin/env python3
# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the idle session query builder.
"""

import sys
from pathlib import Path

import pytest

# Add src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from pg_timeout.config import ConfigError  # noqa: E402
from pg_timeout.queries import build_queries, IDLE_PREDICATE  # noqa: E402


class TestBuildQueries:

    def test_both_statements_share_the_idle_predicate(self):
        queries = build_queries(60)

        assert queries.select_sql.endswith("WHERE " + IDLE_PREDICATE)
        assert queries.terminate_sql.endswith("WHERE " + IDLE_PREDICATE)
        assert queries.params == {"timeout": 60}
        assert queries.timeout == 60

    def test_predicate_excludes_own_session_and_non_idle_states(self):
        assert "pid <> pg_backend_pid()" in IDLE_PREDICATE
        assert "state = 'idle'" in IDLE_PREDICATE
        assert "state_change < current_timestamp" in IDLE_PREDICATE

    def test_select_columns_in_log_order(self):
        queries = build_queries(60)
        assert queries.select_sql.startswith(
            "SELECT pid, usename, datname, application_name, client_hostname FROM pg_stat_activity"
        )

    def test_terminate_uses_pg_terminate_backend(self):
        assert build_queries(60).terminate_sql.startswith("SELECT pg_terminate_backend(pid)")

    def test_rebuilt_with_new_timeout(self):
        assert build_queries(60).params != build_queries(120).params
        assert build_queries(120).params == {"timeout": 120}

    @pytest.mark.parametrize("bad", [0, -5, "60", 1.5, True, None])
    def test_rejects_invalid_timeout(self, bad):
        with pytest.raises(ConfigError):
            build_queries(bad)
