# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Wait/wake primitive for the monitor loop.

A self-pipe latch: set() writes a single byte to a non-blocking pipe and is
safe to call from a signal handler. wait() blocks in select() until the
latch is set, the timeout expires or the owner process goes away.
"""

import enum
import os
import select
import time
from typing import Optional

# How often the owner process is checked while waiting (seconds)
OWNER_POLL_INTERVAL = 1.0


class WakeEvent(enum.IntFlag):
    """Reasons a wait returned. Several can be set at once."""
    LATCH_SET = 1
    TIMEOUT = 2
    OWNER_DEATH = 4


class OwnerWatch:
    """
    Tracks the process that launched this worker.

    The owner is dead when we have been re-parented, or when an explicitly
    configured owner pid no longer exists.
    """

    def __init__(self, owner_pid: Optional[int] = None):
        self.parent_pid = os.getppid()
        self.owner_pid = owner_pid

    def alive(self) -> bool:
        if os.getppid() != self.parent_pid:
            return False
        if self.owner_pid is not None:
            try:
                os.kill(self.owner_pid, 0)  # Signal 0 just checks if process exists
            except ProcessLookupError:
                return False
            except PermissionError:
                # Exists, owned by another user
                return True
        return True


class Latch:
    """Self-pipe latch, see module docstring."""

    def __init__(self):
        self._read_fd, self._write_fd = os.pipe()
        os.set_blocking(self._read_fd, False)
        os.set_blocking(self._write_fd, False)

    def set(self) -> None:
        """Wake the waiter. O(1), no allocation beyond the byte literal."""
        try:
            os.write(self._write_fd, b"\0")
        except BlockingIOError:
            # Pipe full, the waiter will wake anyway
            pass

    def is_set(self) -> bool:
        readable, _, _ = select.select([self._read_fd], [], [], 0)
        return bool(readable)

    def reset(self) -> None:
        """Drain pending wakeups."""
        while True:
            try:
                if not os.read(self._read_fd, 512):
                    return
            except BlockingIOError:
                return

    def wait(self, timeout: float, owner: Optional[OwnerWatch] = None) -> WakeEvent:
        """
        Block until set, timed out, or owner death.

        Args:
            timeout: Seconds to wait at most
            owner: Owner process watch; checked every OWNER_POLL_INTERVAL seconds

        Returns:
            WakeEvent flags describing why the wait ended
        """
        deadline = time.monotonic() + timeout
        while True:
            if owner is not None and not owner.alive():
                return WakeEvent.OWNER_DEATH

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return WakeEvent.TIMEOUT

            slice_ = remaining if owner is None else min(remaining, OWNER_POLL_INTERVAL)
            # select() is restarted after signal handlers run (PEP 475)
            readable, _, _ = select.select([self._read_fd], [], [], slice_)

            if readable:
                events = WakeEvent.LATCH_SET
                if owner is not None and not owner.alive():
                    events |= WakeEvent.OWNER_DEATH
                return events

    def close(self) -> None:
        os.close(self._read_fd)
        os.close(self._write_fd)
