"""
Threading utilities for background probes.

Workers run on the Qt thread pool. Results are kept on the worker object and
read by the caller after joining, so no event loop is needed to collect them.
"""

import time
import threading
from typing import Any, Callable, Optional, Sequence

from PySide6.QtCore import QRunnable, QThreadPool, QMutex, QMutexLocker

# How often waiters re-check worker state (seconds)
_POLL_INTERVAL = 0.05

# Cancelled workers still queued or running; keeps their wrappers alive until run() returns
_abandoned: set = set()
_abandoned_lock = threading.Lock()


class CancellableWorker(QRunnable):
    """
    Executes a function once in a thread pool and keeps its outcome.

    Cancellation is cooperative: cancel() marks the worker so that whatever
    the function returns afterwards is discarded. The running call itself
    is not interrupted.

    Usage:
        worker = CancellableWorker(probe_port, "vpn.example.com", 443)
        start_worker(worker)
        if wait_for_workers([worker], 10_000, cancel_event):
            print(worker.result)
    """

    def __init__(self, func: Callable, *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args
        self.kwargs = kwargs
        self._result: Any = None
        self._error: Optional[str] = None
        self._done = False
        self._cancelled = False
        self._mutex = QMutex()
        # The pool must not delete the C++ object; the caller reads results after run()
        self.setAutoDelete(False)

    @property
    def is_cancelled(self) -> bool:
        """Thread-safe check of cancellation state."""
        with QMutexLocker(self._mutex):
            return self._cancelled

    @property
    def is_done(self) -> bool:
        """True once the function returned, raised, or the worker was abandoned."""
        with QMutexLocker(self._mutex):
            return self._done

    @property
    def result(self) -> Any:
        with QMutexLocker(self._mutex):
            return self._result

    @property
    def error(self) -> Optional[str]:
        with QMutexLocker(self._mutex):
            return self._error

    def cancel(self, reason: str = "cancelled") -> None:
        """Stop waiting for this worker and discard its eventual outcome."""
        with QMutexLocker(self._mutex):
            if self._done:
                return
            self._cancelled = True
            self._done = True
            self._error = reason
            with _abandoned_lock:
                _abandoned.add(self)

    def run(self) -> None:
        """Execute the function and store the outcome unless cancelled."""
        try:
            self._execute()
        finally:
            with _abandoned_lock:
                _abandoned.discard(self)

    def _execute(self) -> None:
        if self.is_cancelled:
            return
        try:
            result = self.func(*self.args, **self.kwargs)
            error = None
        except Exception as e:
            result = None
            error = str(e)
        with QMutexLocker(self._mutex):
            if self._cancelled:
                return
            self._result = result
            self._error = error
            self._done = True


def start_worker(worker: CancellableWorker, pool: Optional[QThreadPool] = None) -> None:
    """Queue a worker, growing the pool so blocking probes never wait on each other."""
    pool = pool or QThreadPool.globalInstance()
    wanted = pool.activeThreadCount() + 1
    if wanted > pool.maxThreadCount():
        pool.setMaxThreadCount(wanted)
    pool.start(worker)


def wait_for_workers(
    workers: Sequence[CancellableWorker],
    timeout_ms: int,
    cancel_event: Optional[threading.Event] = None,
) -> bool:
    """
    Join-style wait for a group of workers.

    Returns True when every worker finished. On timeout or when cancel_event
    is set, unfinished workers are cancelled and False is returned.
    """
    deadline = time.monotonic() + timeout_ms / 1000.0
    while True:
        if all(w.is_done for w in workers):
            return all(not w.is_cancelled for w in workers)
        if cancel_event is not None and cancel_event.is_set():
            reason = "cancelled"
            break
        if time.monotonic() >= deadline:
            reason = f"timed out after {timeout_ms / 1000.0:g}s"
            break
        time.sleep(_POLL_INTERVAL)

    for worker in workers:
        worker.cancel(reason)
    return False


def run_concurrently(
    funcs: Sequence[Callable[[], Any]],
    timeout_ms: int,
    cancel_event: Optional[threading.Event] = None,
) -> list[CancellableWorker]:
    """Run callables in parallel, wait for all of them, return workers in input order."""
    workers = [CancellableWorker(func) for func in funcs]
    for worker in workers:
        start_worker(worker)
    wait_for_workers(workers, timeout_ms, cancel_event)
    return workers
