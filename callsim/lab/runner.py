"""
CallSim - Background Runner
===========================

Detached execution for long batch jobs. A single worker thread runs
submitted jobs one at a time in submission order, so the caller returns
immediately while batch work stays strictly sequential.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)


class BackgroundRunner:
    """Single-worker executor for analysis runs."""

    def __init__(self, thread_name_prefix: str = "callsim-lab"):
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name_prefix)

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        future = self.executor.submit(fn, *args, **kwargs)
        future.add_done_callback(self._report)
        return future

    @staticmethod
    def _report(future: Future) -> None:
        if future.cancelled():
            logger.warning("Background job cancelled")
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"Background job raised: {exc}", exc_info=(type(exc), exc, exc.__traceback__))

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

    def __enter__(self) -> "BackgroundRunner":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)
        return False


_default_runner: BackgroundRunner | None = None
_default_runner_lock = threading.Lock()


def get_runner() -> BackgroundRunner:
    """Return the process-wide runner, created on first use."""
    global _default_runner
    with _default_runner_lock:
        if _default_runner is None:
            _default_runner = BackgroundRunner()
        return _default_runner
