"""
In-memory history of completed pipeline runs.

Most recent first, bounded by ``max_entries`` with oldest eviction.  The
history is for inspection only and is lost when the process exits.

All operations take one ``threading.Lock``.  None of them suspend, so the
lock is safe to use from coroutines and is never held across an ``await``.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, Optional, Tuple

from decomp_pipeline.io.schema import HistorySnapshot, PipelineRun

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100


class ResultStore:
    """Owner of the run history.  Entries are appended, never edited."""

    def __init__(self, max_entries: Optional[int] = DEFAULT_MAX_ENTRIES):
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self._runs: Deque[PipelineRun] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def append(self, run: PipelineRun) -> None:
        """Insert *run* at the head, evicting the oldest entry when full."""
        with self._lock:
            if self.max_entries is not None and len(self._runs) == self.max_entries:
                evicted = self._runs[-1]
                logger.debug("History full (%d), evicting %s", self.max_entries, evicted.id)
            self._runs.appendleft(run)
        logger.info("Recorded run %s (%s, %s)",
                    run.id, run.fragment_identifier, run.status.value)

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._runs)
            self._runs.clear()
        logger.info("History cleared (%d runs dropped)", dropped)

    def list(self) -> Tuple[PipelineRun, ...]:
        """Read-only snapshot, most recent first."""
        with self._lock:
            return tuple(self._runs)

    def get(self, run_id: str) -> Optional[PipelineRun]:
        with self._lock:
            for run in self._runs:
                if run.id == run_id:
                    return run
        return None

    def snapshot(self) -> HistorySnapshot:
        runs = self.list()
        return HistorySnapshot(count=len(runs), runs=list(runs))

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)
