# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
pg_timeout: terminate PostgreSQL sessions that have been idle too long.

A supervised worker process polls pg_stat_activity every naptime seconds
and terminates sessions idle for more than idle_session_timeout seconds.
"""

from .config import ConfigError, ConfigStore, PgTimeoutConfig, TimeoutConfig, load_config
from .monitor import CycleResult, MonitorLoop, SessionRecord
from .queries import IdleQueries, build_queries
from .state import ExitCode, WorkerState

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "ConfigStore",
    "CycleResult",
    "ExitCode",
    "IdleQueries",
    "MonitorLoop",
    "PgTimeoutConfig",
    "SessionRecord",
    "TimeoutConfig",
    "WorkerState",
    "build_queries",
    "load_config",
]
