# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Process-wide worker flags and exit codes.
"""

import enum


class ExitCode(enum.IntEnum):
    """Worker process exit statuses, as seen by the supervisor."""
    DONE = 0  # never restarted
    SHUTDOWN = 1  # voluntary stop or owner death
    FATAL = 2  # registry query fault or unhandled error
    CONFIG = 3  # invalid configuration at startup


class WorkerAbort(SystemExit):
    """Explicit abort path for fatal faults. Carries an ExitCode."""

    def __init__(self, code: ExitCode = ExitCode.FATAL):
        super().__init__(int(code))


class WorkerState:
    """
    Flags set by signal handlers.

    Each flag is written only by a handler and read-and-cleared only by the
    monitor loop; plain attribute writes are atomic under the interpreter
    lock, so no further locking is used.
    """

    __slots__ = ("shutdown_requested", "reload_requested")

    def __init__(self):
        self.shutdown_requested = False
        self.reload_requested = False
