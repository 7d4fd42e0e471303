# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Activity reporting for the monitor worker.

Keeps the worker's current state ("running" with the active query, or
"idle") and optionally mirrors it to a JSON status file that operators
and the control scripts can read.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

STATE_RUNNING = "running"
STATE_IDLE = "idle"


class ActivityReporter:
    """Records what the worker is doing right now."""

    def __init__(self, worker_name: str, status_file: Optional[str] = None):
        self.worker_name = worker_name
        self.status_file = Path(status_file) if status_file else None
        self.state = STATE_IDLE
        self.query: Optional[str] = None
        self.state_change = datetime.now(timezone.utc)

    def report(self, state: str, query: Optional[str] = None) -> None:
        """
        Report a state change.

        Args:
            state: STATE_RUNNING or STATE_IDLE
            query: Active query text (cleared when idle)
        """
        self.state = state
        self.query = query if state == STATE_RUNNING else None
        self.state_change = datetime.now(timezone.utc)
        logger.debug(f"{self.worker_name}: state={state}")

        if self.status_file is not None:
            self._write_status_file()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "pid": os.getpid(),
            "worker": self.worker_name,
            "state": self.state,
            "query": self.query,
            "state_change": self.state_change.isoformat(),
        }

    def _write_status_file(self) -> None:
        # Write then rename so readers never see a partial file
        try:
            self.status_file.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.status_file.with_suffix(self.status_file.suffix + ".tmp")
            tmp.write_text(json.dumps(self.snapshot()))
            os.replace(tmp, self.status_file)
        except OSError as e:
            logger.warning(f"Could not write status file {self.status_file}: {e}")
