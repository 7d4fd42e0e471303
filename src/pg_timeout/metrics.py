# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Metrics tracking for monitor cycles.
"""

import logging
from datetime import datetime
from typing import Dict

logger = logging.getLogger(__name__)


class CycleMetrics:
    """Track metrics across monitor cycles."""

    def __init__(self):
        self.cycles = 0
        self.sessions_found = 0
        self.sessions_terminated = 0
        self.null_pids = 0
        self.terminate_batches = 0
        self.total_duration = 0.0
        self.max_duration = 0.0
        self.last_reset = datetime.now()

    def record_cycle(self, result) -> None:
        """Record one CycleResult."""
        self.cycles += 1
        self.sessions_found += result.found
        self.sessions_terminated += result.terminated
        self.null_pids += result.skipped
        if result.terminate_issued:
            self.terminate_batches += 1
        self.total_duration += result.duration
        self.max_duration = max(self.max_duration, result.duration)

    def get_stats(self) -> Dict:
        """Get current statistics."""
        return {
            'cycles': self.cycles,
            'sessions_found': self.sessions_found,
            'sessions_terminated': self.sessions_terminated,
            'null_pids': self.null_pids,
            'terminate_batches': self.terminate_batches,
            'avg_duration_ms': self.total_duration / self.cycles * 1000 if self.cycles else 0,
            'max_duration_ms': self.max_duration * 1000,
        }

    def reset(self):
        """Reset metrics."""
        self.cycles = 0
        self.sessions_found = 0
        self.sessions_terminated = 0
        self.null_pids = 0
        self.terminate_batches = 0
        self.total_duration = 0.0
        self.max_duration = 0.0
        self.last_reset = datetime.now()
