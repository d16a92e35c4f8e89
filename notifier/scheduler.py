"""
Hand-off from the emitter to the dispatcher.

The emitter must return as soon as the delivery rows are written; actually
sending them happens on a worker pool. Requests made while a run is still
queued share that run, since it will pick up every row written before it
starts.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Protocol

from notifier.dispatcher import DispatchSummary, Dispatcher

logger = logging.getLogger("notifier.scheduler")


class Scheduler(Protocol):
    def schedule(self) -> Optional[Future]: ...


class DispatchScheduler:
    """Runs Dispatcher.dispatch_pending() on a bounded thread pool."""

    def __init__(self, dispatcher: Dispatcher, max_workers: int = 1):
        self.dispatcher = dispatcher
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notifier-dispatch"
        )
        self._lock = threading.Lock()
        self._queued: Optional[Future] = None

    def schedule(self) -> Future:
        """Queue a dispatch run, or return the one already waiting to start."""
        with self._lock:
            queued = self._queued
            if queued is not None and not queued.running() and not queued.done():
                return queued
            future = self._executor.submit(self._run)
            self._queued = future
            return future

    def _run(self) -> DispatchSummary:
        try:
            return self.dispatcher.dispatch_pending()
        except Exception as e:
            logger.exception(f"Background dispatch failed: {e}")
            return DispatchSummary()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; by default wait for queued runs to finish."""
        self._executor.shutdown(wait=wait)


class ImmediateScheduler:
    """Runs the dispatcher synchronously in the caller's thread (CLI and tests)."""

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher
        self.runs: list[DispatchSummary] = []

    def schedule(self) -> Future:
        future: Future = Future()
        summary = self.dispatcher.dispatch_pending()
        self.runs.append(summary)
        future.set_result(summary)
        return future
