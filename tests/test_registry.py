#!/usr/bin/env python3
# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the PostgreSQL session registry client, against a mocked connection.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import psycopg
import pytest

# Add src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from pg_timeout.config import DatabaseConfig  # noqa: E402
from pg_timeout.queries import build_queries  # noqa: E402
from pg_timeout.registry import PostgresSessionRegistry  # noqa: E402


@pytest.fixture
def connection():
    conn = MagicMock()
    conn.closed = False
    conn.info.backend_pid = 4321
    return conn


@pytest.fixture
def registry(connection):
    with patch("pg_timeout.registry.psycopg.connect", return_value=connection) as connect:
        registry = PostgresSessionRegistry(DatabaseConfig(host="db", user="monitor"))
        registry.connect()
        registry.connect_mock = connect
        yield registry


def cursor_of(connection):
    return connection.cursor.return_value.__enter__.return_value


class TestPostgresSessionRegistry:

    def test_connect_uses_autocommit_and_repeatable_read(self, registry, connection):
        kwargs = registry.connect_mock.call_args.kwargs
        assert kwargs["autocommit"] is True
        assert kwargs["host"] == "db"
        assert kwargs["dbname"] == "postgres"
        assert "password" not in kwargs
        assert connection.isolation_level == psycopg.IsolationLevel.REPEATABLE_READ
        assert registry.backend_pid() == 4321

    def test_select_returns_rows(self, registry, connection):
        cur = cursor_of(connection)
        cur.description = [object()] * 5
        cur.fetchall.return_value = [(1, "alice", "app", "psql", None)]
        queries = build_queries(60)

        result = registry.select_idle(queries)

        assert result.ok
        assert result.rows == [(1, "alice", "app", "psql", None)]
        cur.execute.assert_called_once_with(queries.select_sql, {"timeout": 60})

    def test_unexpected_shape_is_a_failure(self, registry, connection):
        cur = cursor_of(connection)
        cur.description = [object()] * 3

        result = registry.select_idle(build_queries(60))

        assert not result.ok
        assert "expected 5 column(s), got 3" in result.error

    def test_no_result_set_is_a_failure(self, registry, connection):
        cursor_of(connection).description = None

        result = registry.terminate_idle(build_queries(60))

        assert not result.ok

    def test_database_error_becomes_failed_result(self, registry, connection):
        cursor_of(connection).execute.side_effect = psycopg.errors.InsufficientPrivilege("permission denied")

        result = registry.terminate_idle(build_queries(60))

        assert not result.ok
        assert "permission denied" in result.error

    def test_transaction_delegates_to_connection(self, registry, connection):
        with registry.transaction():
            pass
        connection.transaction.assert_called_once_with()

    def test_in_recovery(self, registry, connection):
        cursor_of(connection).fetchone.return_value = (True,)
        assert registry.in_recovery()

    def test_close(self, registry, connection):
        registry.close()
        connection.close.assert_called_once()
        with pytest.raises(RuntimeError):
            registry.backend_pid()
