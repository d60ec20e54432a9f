import threading

import pytest

from seller_analytics.services.marketplace_sync.executor import BoundedExecutor


def test_tasks_run_on_pool_threads():
    with BoundedExecutor(2, 10, thread_name_prefix="test-pool") as executor:
        futures = [executor.submit(lambda: threading.current_thread().name) for _ in range(4)]
        names = [f.result(timeout=5) for f in futures]
    assert all(name.startswith("test-pool") for name in names)


def test_overflow_runs_on_caller_thread():
    release = threading.Event()
    started = threading.Event()

    def blocker():
        started.set()
        release.wait(timeout=5)
        return "blocked"

    executor = BoundedExecutor(1, 0, thread_name_prefix="tiny")
    try:
        first = executor.submit(blocker)
        assert started.wait(timeout=5)

        overflow = executor.submit(lambda: threading.current_thread().name)
        # Ran inline, so it is already complete while the pool is still busy.
        assert overflow.done()
        assert overflow.result() == threading.current_thread().name
        assert not first.done()
    finally:
        release.set()
        executor.shutdown()
    assert first.result(timeout=5) == "blocked"


def test_overflow_exception_is_kept_on_future():
    release = threading.Event()
    executor = BoundedExecutor(1, 0)
    try:
        executor.submit(release.wait, 5)

        def boom():
            raise RuntimeError("boom")

        future = executor.submit(boom)
        with pytest.raises(RuntimeError, match="boom"):
            future.result()
    finally:
        release.set()
        executor.shutdown()


def test_slots_are_released_after_completion():
    # A slot must be free again as soon as result() returns.
    with BoundedExecutor(1, 0, thread_name_prefix="reuse") as executor:
        for _ in range(200):
            name = executor.submit(lambda: threading.current_thread().name).result(timeout=5)
            assert name.startswith("reuse")


def test_cancelled_queued_task_frees_its_slot():
    release = threading.Event()
    started = threading.Event()

    def blocker():
        started.set()
        release.wait(timeout=5)

    executor = BoundedExecutor(1, 1, thread_name_prefix="cancel")
    try:
        executor.submit(blocker)
        assert started.wait(timeout=5)
        queued = executor.submit(lambda: "never")
        assert queued.cancel()

        # Queued on the pool, not run inline.
        third = executor.submit(lambda: threading.current_thread().name)
        assert not third.done()
    finally:
        release.set()
        executor.shutdown()
    assert third.result(timeout=5).startswith("cancel")


def test_rejects_invalid_sizes():
    with pytest.raises(ValueError):
        BoundedExecutor(0, 10)
    with pytest.raises(ValueError):
        BoundedExecutor(1, -1)
