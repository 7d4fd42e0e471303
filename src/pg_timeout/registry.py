# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
PostgreSQL session registry client.

Wraps the pg_stat_activity view and pg_terminate_backend() behind a small
interface. Query failures are returned as QueryResult values instead of
being raised, the monitor loop decides what a failure means.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Tuple

import psycopg

from .config import DatabaseConfig
from .queries import IdleQueries, SELECT_COLUMNS, TERMINATE_COLUMNS

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Outcome of one registry statement."""
    ok: bool
    rows: List[Tuple[Any, ...]] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def success(cls, rows: List[Tuple[Any, ...]]) -> 'QueryResult':
        return cls(ok=True, rows=rows)

    @classmethod
    def failure(cls, error: str) -> 'QueryResult':
        return cls(ok=False, error=error)


class PostgresSessionRegistry:
    """
    Session registry backed by a PostgreSQL connection.

    The connection runs in autocommit mode; each cycle opens its own
    REPEATABLE READ transaction through transaction(), so both statements
    of a cycle read one snapshot of pg_stat_activity.
    """

    def __init__(self, db_config: DatabaseConfig):
        """
        Initialize registry client.

        Args:
            db_config: Connection settings
        """
        self.db_config = db_config
        self.conn: Optional[psycopg.Connection] = None

    def connect(self) -> None:
        """Open the connection. Connection errors propagate."""
        logger.info(
            f"Connecting to PostgreSQL: host={self.db_config.host or 'default'} "
            f"port={self.db_config.port} dbname={self.db_config.dbname}"
        )
        self.conn = psycopg.connect(autocommit=True, **self.db_config.connect_kwargs())
        self.conn.isolation_level = psycopg.IsolationLevel.REPEATABLE_READ
        logger.info(f"Connected to PostgreSQL (backend pid {self.backend_pid()})")

    def close(self) -> None:
        """Close the connection if open."""
        if self.conn is not None and not self.conn.closed:
            self.conn.close()
            logger.debug("PostgreSQL connection closed")
        self.conn = None

    def _connection(self) -> psycopg.Connection:
        if self.conn is None:
            raise RuntimeError("Registry is not connected")
        return self.conn

    def backend_pid(self) -> int:
        """Server process id of our own session."""
        return self._connection().info.backend_pid

    def in_recovery(self) -> bool:
        """Whether the server is still replaying WAL (standby or crash recovery)."""
        with self._connection().cursor() as cur:
            cur.execute("SELECT pg_is_in_recovery()")
            row = cur.fetchone()
        return bool(row and row[0])

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Transaction scope for one cycle; rolled back if the body raises."""
        with self._connection().transaction():
            yield

    def _execute(self, sql: str, params: Any, columns: int) -> QueryResult:
        try:
            with self._connection().cursor() as cur:
                cur.execute(sql, params)
                if cur.description is None:
                    return QueryResult.failure("statement returned no result set")
                if len(cur.description) != columns:
                    return QueryResult.failure(
                        f"expected {columns} column(s), got {len(cur.description)}"
                    )
                rows = cur.fetchall()
        except psycopg.Error as e:
            sqlstate = getattr(getattr(e, "diag", None), "sqlstate", None)
            return QueryResult.failure(f"{e} (sqlstate {sqlstate})" if sqlstate else str(e))
        return QueryResult.success(rows)

    def select_idle(self, queries: IdleQueries) -> QueryResult:
        """Run the select-candidates statement."""
        return self._execute(queries.select_sql, queries.params, SELECT_COLUMNS)

    def terminate_idle(self, queries: IdleQueries) -> QueryResult:
        """Run the terminate-candidates statement."""
        return self._execute(queries.terminate_sql, queries.params, TERMINATE_COLUMNS)
