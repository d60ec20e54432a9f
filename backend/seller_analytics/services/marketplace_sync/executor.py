"""Bounded worker pool with caller-runs overflow.

``concurrent.futures.ThreadPoolExecutor`` queues without limit. Sync runs need
a bounded queue where an overflowing submission is executed on the submitting
thread instead of being rejected or dropped, so no workspace is ever lost
under saturation.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, TypeVar

from seller_analytics.utils.logger import logger

T = TypeVar("T")


class BoundedExecutor:
    def __init__(self, max_workers: int, queue_capacity: int, thread_name_prefix: str = "sync"):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if queue_capacity < 0:
            raise ValueError("queue_capacity must be >= 0")
        self.max_workers = max_workers
        self.queue_capacity = queue_capacity
        self.thread_name_prefix = thread_name_prefix
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=thread_name_prefix
        )
        # One permit per running or queued task.
        self._slots = threading.BoundedSemaphore(max_workers + queue_capacity)

    def submit(self, fn: Callable[..., T], *args, **kwargs) -> "Future[T]":
        if not self._slots.acquire(blocking=False):
            logger.warning(
                f"{self.thread_name_prefix} pool saturated; running task on "
                f"{threading.current_thread().name}"
            )
            return self._run_inline(fn, *args, **kwargs)

        # The slot is freed on the worker before the result is published, so a
        # caller woken by ``result()`` can always reuse it.
        def _task():
            try:
                return fn(*args, **kwargs)
            finally:
                self._slots.release()

        def _release_if_cancelled(future: Future) -> None:
            if future.cancelled():
                self._slots.release()

        try:
            future = self._executor.submit(_task)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(_release_if_cancelled)
        return future

    @staticmethod
    def _run_inline(fn: Callable[..., T], *args, **kwargs) -> "Future[T]":
        future: Future = Future()
        future.set_running_or_notify_cancel()
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "BoundedExecutor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)
