# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Registry queries for idle session detection and termination.

Both statements are built from a single timeout value and share one
WHERE clause, so the select and the terminate of one cycle always agree
on what "idle too long" means.
"""

from dataclasses import dataclass, field
from typing import Dict, Any

from .config import ConfigError

# In PG 10 and above background workers show up in pg_stat_activity with
# state and state_change set to NULL, so no backend_type filter is needed.
IDLE_PREDICATE = (
    "pid <> pg_backend_pid() "
    "AND state = 'idle' "
    "AND state_change < current_timestamp - make_interval(secs => %(timeout)s)"
)

SELECT_IDLE_SQL = (
    "SELECT pid, usename, datname, application_name, client_hostname "
    "FROM pg_stat_activity "
    "WHERE " + IDLE_PREDICATE
)

TERMINATE_IDLE_SQL = (
    "SELECT pg_terminate_backend(pid) "
    "FROM pg_stat_activity "
    "WHERE " + IDLE_PREDICATE
)

SELECT_COLUMNS = 5
TERMINATE_COLUMNS = 1


@dataclass(frozen=True)
class IdleQueries:
    """Select and terminate statements for one cycle."""
    timeout: int
    select_sql: str = SELECT_IDLE_SQL
    terminate_sql: str = TERMINATE_IDLE_SQL
    params: Dict[str, Any] = field(default_factory=dict)


def build_queries(idle_session_timeout: int) -> IdleQueries:
    """
    Build the select-candidates and terminate-candidates queries.

    Args:
        idle_session_timeout: Seconds a session may stay idle

    Returns:
        IdleQueries bound to this timeout

    Raises:
        ConfigError: If the timeout is not a positive integer
    """
    if isinstance(idle_session_timeout, bool) or not isinstance(idle_session_timeout, int):
        raise ConfigError(f"idle_session_timeout must be an integer, got {idle_session_timeout!r}")
    if idle_session_timeout < 1:
        raise ConfigError(f"idle_session_timeout must be >= 1, got {idle_session_timeout}")

    return IdleQueries(
        timeout=idle_session_timeout,
        params={"timeout": idle_session_timeout},
    )
