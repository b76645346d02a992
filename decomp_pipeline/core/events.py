"""
Progress channel for pipeline runs.

The coordinator publishes a ``ProgressEvent`` at every stage boundary.
Observers either register a callback or open an ``asyncio.Queue`` channel.
Delivery is best-effort: a failing callback is logged and skipped, and a
full channel drops the event.  Nothing here can alter a run.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, List

from decomp_pipeline.io.schema import ProgressEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class ProgressBus:
    """Observer registry for stage-boundary events."""

    def __init__(self) -> None:
        self._callbacks: List[ProgressCallback] = []
        self._channels: List[asyncio.Queue] = []
        self._lock = threading.Lock()

    # -----------------------------------------------------------------
    # Subscription
    # -----------------------------------------------------------------

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        with self._lock:
            self._callbacks.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return _unsubscribe

    def open_channel(self, maxsize: int = 100) -> asyncio.Queue:
        """Open a queue that receives every subsequent event."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        with self._lock:
            self._channels.append(queue)
        return queue

    def close_channel(self, queue: asyncio.Queue) -> None:
        with self._lock:
            if queue in self._channels:
                self._channels.remove(queue)

    # -----------------------------------------------------------------
    # Publishing
    # -----------------------------------------------------------------

    def publish(self, event: ProgressEvent) -> None:
        logger.debug("[%s] %s %d%% %s", event.run_id, event.stage,
                     event.percent_complete, event.message)
        with self._lock:
            callbacks = list(self._callbacks)
            channels = list(self._channels)

        for cb in callbacks:
            try:
                cb(event)
            except Exception:
                logger.exception("Progress callback %r failed", cb)

        for queue in channels:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Progress channel full, dropping %s event for %s",
                               event.stage, event.run_id)
