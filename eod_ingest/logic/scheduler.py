from __future__ import annotations

"""Bounded, rate-limited execution of independent tasks."""

import logging
import math
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class IntervalRateLimiter:
    """Allow at most ``interval_cap`` acquisitions per fixed window of ``interval`` seconds."""

    def __init__(
        self,
        interval_cap: int,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval_cap < 1:
            raise ValueError("interval_cap must be at least 1")
        if not math.isfinite(interval) or interval < 0:
            raise ValueError("interval must be a finite, non-negative number")
        self._interval_cap = interval_cap
        self._interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._window_start: float | None = None
        self._window_count = 0

    def acquire(self) -> None:
        """Block until a start token is available in the current window."""
        with self._lock:
            while True:
                now = self._clock()
                if self._window_start is None or now - self._window_start >= self._interval:
                    self._window_start = now
                    self._window_count = 0
                if self._window_count < self._interval_cap:
                    self._window_count += 1
                    return
                self._sleep(self._interval - (now - self._window_start))


class RateLimitedScheduler:
    """Run submitted tasks with bounded concurrency and a bounded start rate.

    Tasks start in submission order: a single dispatcher thread waits for a free
    worker slot and a rate-limit token before handing each task to the pool.
    Exceptions raised by a task are stored on its future and never reach
    ``wait_idle`` or sibling tasks.
    """

    def __init__(
        self,
        concurrency: int,
        interval_cap: int,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._limiter = IntervalRateLimiter(interval_cap, interval, clock=clock, sleep=sleep)
        self._slots = threading.BoundedSemaphore(concurrency)
        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="eod-task")
        self._pending: queue.Queue[tuple[Callable[[], Any], Future[Any]] | None] = queue.Queue()
        self._idle = threading.Condition()
        self._outstanding = 0
        self._failed = 0
        self._closed = False
        self._dispatcher = threading.Thread(
            target=self._dispatch,
            name="eod-dispatcher",
            daemon=True,
        )
        self._dispatcher.start()

    @property
    def failed_count(self) -> int:
        """Number of tasks that raised so far."""
        with self._idle:
            return self._failed

    def submit(self, task: Callable[[], T]) -> Future[T]:
        """Queue a task for execution and return its future immediately."""
        future: Future[T] = Future()
        with self._idle:
            if self._closed:
                raise RuntimeError("Cannot submit tasks after shutdown")
            self._outstanding += 1
        self._pending.put((task, future))
        return future

    def wait_idle(self) -> None:
        """Block until every submitted task has finished."""
        with self._idle:
            self._idle.wait_for(lambda: self._outstanding == 0)

    def shutdown(self) -> None:
        """Finish queued tasks, then stop the dispatcher and the worker pool."""
        with self._idle:
            if self._closed:
                return
            self._closed = True
        self._pending.put(None)
        self._dispatcher.join()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "RateLimitedScheduler":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.shutdown()

    def _dispatch(self) -> None:
        while True:
            item = self._pending.get()
            if item is None:
                return
            task, future = item
            self._slots.acquire()
            try:
                self._limiter.acquire()
                self._executor.submit(self._run, task, future)
            except Exception as exc:
                logger.error("Failed to dispatch scheduled task: %s", exc)
                self._slots.release()
                if future.set_running_or_notify_cancel():
                    future.set_exception(exc)
                self._finish(failed=True)

    def _run(self, task: Callable[[], Any], future: Future[Any]) -> None:
        failed = False
        try:
            if not future.set_running_or_notify_cancel():
                return
            try:
                result = task()
            except BaseException as exc:
                # every future resolves, BaseException included
                failed = True
                logger.debug("Scheduled task raised: %s", exc, exc_info=True)
                future.set_exception(exc)
            else:
                future.set_result(result)
        finally:
            self._slots.release()
            self._finish(failed)

    def _finish(self, failed: bool) -> None:
        with self._idle:
            if failed:
                self._failed += 1
            self._outstanding -= 1
            if self._outstanding == 0:
                self._idle.notify_all()
