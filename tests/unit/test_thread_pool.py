"""
Unit tests for the connection thread pool.
"""

import threading
import time

import pytest

from identd.core.thread_pool import ThreadPool


@pytest.fixture
def pool():
    pool = ThreadPool(min_workers=1, name="test")
    pool.start()
    yield pool
    pool.shutdown(wait=True, timeout=2.0)


def test_submit_before_start_raises():
    with pytest.raises(RuntimeError, match="not started"):
        ThreadPool().submit(print)


def test_runs_submitted_task(pool):
    done = threading.Event()

    pool.submit(done.set)

    assert done.wait(2.0)


def test_passes_arguments(pool):
    received = []
    done = threading.Event()

    def task(a, b):
        received.append((a, b))
        done.set()

    pool.submit(task, args=(1, "two"))

    assert done.wait(2.0)
    assert received == [(1, "two")]


def test_failing_task_does_not_kill_worker(pool):
    done = threading.Event()

    def explode():
        raise RuntimeError("boom")

    pool.submit(explode)
    pool.submit(done.set)

    assert done.wait(2.0)


def test_scales_up_when_workers_are_busy(pool):
    release = threading.Event()
    started = threading.Semaphore(0)

    def block():
        started.release()
        release.wait(5.0)

    try:
        for _ in range(3):
            pool.submit(block)
        for _ in range(3):
            assert started.acquire(timeout=2.0)

        assert pool.worker_count == 3
        assert pool.busy_workers == 3
    finally:
        release.set()


def test_blocked_workers_never_delay_new_tasks(pool):
    """Tasks submitted while every worker is stuck still start promptly."""
    release = threading.Event()
    started = threading.Semaphore(0)
    done = threading.Event()

    def block():
        started.release()
        release.wait(10.0)

    try:
        for _ in range(10):
            pool.submit(block)
        for _ in range(10):
            assert started.acquire(timeout=2.0)

        pool.submit(done.set)

        assert done.wait(1.0)
    finally:
        release.set()


def test_idle_extra_workers_retire():
    pool = ThreadPool(min_workers=1, idle_timeout=0.1, name="retire")
    pool.start()
    release = threading.Event()
    started = threading.Semaphore(0)

    def block():
        started.release()
        release.wait(5.0)

    try:
        for _ in range(3):
            pool.submit(block)
        for _ in range(3):
            assert started.acquire(timeout=2.0)
        assert pool.worker_count == 3

        release.set()

        deadline = time.monotonic() + 3.0
        while pool.worker_count > 1 and time.monotonic() < deadline:
            time.sleep(0.05)
        assert pool.worker_count == 1
    finally:
        release.set()
        pool.shutdown(wait=True, timeout=2.0)


def test_submit_after_shutdown_raises(pool):
    pool.shutdown(wait=True, timeout=2.0)

    with pytest.raises(RuntimeError, match="shutting down"):
        pool.submit(print)


def test_shutdown_without_wait_still_runs_queued_tasks():
    pool = ThreadPool(min_workers=1, name="drain")
    pool.start()
    done = threading.Event()

    pool.submit(done.set)
    pool.shutdown(wait=False)

    assert done.wait(2.0)


def test_shutdown_without_wait_returns_while_workers_are_stuck():
    pool = ThreadPool(min_workers=1, name="stuck")
    pool.start()
    release = threading.Event()
    started = threading.Semaphore(0)

    def block():
        started.release()
        release.wait(10.0)

    try:
        for _ in range(20):
            pool.submit(block)
        for _ in range(20):
            assert started.acquire(timeout=2.0)

        began = time.monotonic()
        pool.shutdown(wait=False)

        assert time.monotonic() - began < 0.5
    finally:
        release.set()
