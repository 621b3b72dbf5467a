"""Tests for the task dispatch modes."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

import task_pool
from task_pool import (DedicatedWorkerPool, ExecutorPool, InlinePool, SharedPool,
                       TaskError, TaskPool, gather, get_pool, shared_pool)


class Square:
    label = "square"

    def __init__(self, value):
        self.value = value

    def __call__(self):
        return self.value * self.value


class Fail:
    label = "fail"

    def __call__(self):
        raise ZeroDivisionError("boom")


class Wait:
    """Blocks until released, so concurrency is observable."""
    label = "wait"

    def __init__(self, event):
        self.event = event

    def __call__(self):
        return self.event.wait(timeout=5)


POOLS = [InlinePool, DedicatedWorkerPool, lambda: SharedPool(max_workers=2, idle_timeout=0.05)]


@pytest.fixture(params=POOLS, ids=["inline", "dedicated", "shared"])
def pool(request):
    pool = request.param()
    yield pool
    pool.close()


class TestContract:

    def test_results_in_order(self, pool):
        futures = [pool.run(Square(i)) for i in range(6)]
        assert gather(futures) == [0, 1, 4, 9, 16, 25]

    def test_failure_is_wrapped(self, pool):
        future = pool.run(Fail())
        error = future.exception(timeout=5)
        assert isinstance(error, TaskError)
        assert isinstance(error.__cause__, ZeroDivisionError)
        assert "fail failed" in str(error)

    def test_failure_is_isolated(self, pool):
        futures = [pool.run(Square(2)), pool.run(Fail()), pool.run(Square(3))]
        with pytest.raises(TaskError):
            gather(futures)
        assert futures[0].result(timeout=5) == 4
        assert futures[2].result(timeout=5) == 9


class TestInlinePool:

    def test_runs_synchronously(self):
        future = InlinePool().run(Square(4))
        assert future.done()
        assert future.result() == 16


class TestWorkers:

    def test_dedicated_runs_in_parallel(self):
        event = threading.Event()
        pool = DedicatedWorkerPool()
        waiting = pool.run(Wait(event))
        assert pool.run(Square(5)).result(timeout=5) == 25
        event.set()
        assert waiting.result(timeout=5) is True

    def test_executor_pool(self):
        with ThreadPoolExecutor(max_workers=2) as executor:
            pool = ExecutorPool(executor)
            assert gather([pool.run(Square(3)), pool.run(Square(4))]) == [9, 16]


class TestSharedPool:

    def test_created_lazily(self):
        pool = SharedPool(max_workers=1, idle_timeout=10)
        assert not pool.active
        pool.run(Square(2)).result(timeout=5)
        assert pool.active
        pool.close()
        assert not pool.active

    def test_recycled_when_idle(self):
        pool = SharedPool(max_workers=1, idle_timeout=0.05)
        assert pool.run(Square(2)).result(timeout=5) == 4
        deadline = time.monotonic() + 5
        while pool.active and time.monotonic() < deadline:
            time.sleep(0.01)
        assert not pool.active
        # The next task brings the pool back
        assert pool.run(Square(3)).result(timeout=5) == 9
        pool.close()

    def test_process_wide_singleton(self):
        assert shared_pool() is shared_pool()

    def test_falls_back_when_pool_cannot_start(self, monkeypatch):
        def executor(max_workers=None, thread_name_prefix=""):
            if thread_name_prefix == "palette-pool":
                raise RuntimeError("can't start new thread")
            return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)

        monkeypatch.setattr(task_pool, "ThreadPoolExecutor", executor)
        pool = SharedPool(max_workers=1)
        assert pool.run(Square(7)).result(timeout=5) == 49
        assert not pool.active


class TestGetPool:

    def test_modes(self):
        assert isinstance(get_pool("inline"), InlinePool)
        assert isinstance(get_pool("dedicated"), DedicatedWorkerPool)
        assert get_pool("shared") is shared_pool()

    def test_passthrough(self):
        pool = InlinePool()
        assert get_pool(pool) is pool
        assert isinstance(pool, TaskPool)

    def test_executor(self):
        with ThreadPoolExecutor(max_workers=1) as executor:
            assert isinstance(get_pool(executor), ExecutorPool)

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="Unknown dispatcher"):
            get_pool("gpu")
