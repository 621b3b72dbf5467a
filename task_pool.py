"""
Dispatch of CPU-bound extraction tasks.

A task is any picklable zero-argument callable (one k-means run, or one
saliency computation). Every pool exposes the same contract:

    pool.run(task) -> concurrent.futures.Future

Inputs are numpy arrays handed to the task by reference; tasks never write to
them. A failing task resolves its own future with a TaskError and leaves
sibling tasks alone.

Modes:
    inline     run in the caller's thread, synchronously (deterministic tests)
    dedicated  one worker thread per task, torn down when the task finishes
    shared     one process-wide pool, created lazily and recycled when idle

numpy releases the GIL inside its array kernels, which is where the clustering
and saliency work is spent, so worker threads run those kernels in parallel.
"""

import logging
import os
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Iterable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

SHARED_POOL_IDLE_TIMEOUT = 1.0  # seconds without pending tasks before recycling
MODES = ("inline", "dedicated", "shared")


class TaskError(RuntimeError):
    """A dispatched task raised, or its worker died."""


def describe(task) -> str:
    return getattr(task, "label", None) or type(task).__name__


def call_task(task: Callable[[], T]) -> T:
    """Run a task, wrapping any failure in a TaskError."""
    try:
        return task()
    except Exception as e:
        raise TaskError(f"{describe(task)} failed: {type(e).__name__}: {e}") from e


class TaskPool:
    """Interface shared by every dispatch mode."""

    mode = ""

    def run(self, task: Callable[[], T]) -> "Future[T]":
        raise NotImplementedError

    def close(self) -> None:
        """Release worker resources; the pool stays usable afterwards."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class InlinePool(TaskPool):
    """Runs each task immediately in the caller's own control flow."""

    mode = "inline"

    def run(self, task):
        future = Future()
        try:
            future.set_result(call_task(task))
        except TaskError as e:
            future.set_exception(e)
        return future


class DedicatedWorkerPool(TaskPool):
    """Starts a fresh worker for every task and tears it down afterwards."""

    mode = "dedicated"

    def run(self, task):
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="palette-task")
        try:
            return executor.submit(call_task, task)
        finally:
            # The worker finishes the submitted task, then exits
            executor.shutdown(wait=False)


class ExecutorPool(TaskPool):
    """Adapter for a caller-provided concurrent.futures executor.

    The executor's lifecycle stays with the caller. Process executors need
    picklable tasks, which every task in this project is.
    """

    mode = "executor"

    def __init__(self, executor: Executor):
        self.executor = executor

    def run(self, task):
        return self.executor.submit(call_task, task)


class SharedPool(TaskPool):
    """A lazily created worker pool reused across calls.

    The underlying executor is created on first use and shut down after
    `idle_timeout` seconds without pending tasks; the next task recreates it.
    If the executor cannot be created, tasks fall back to dedicated workers.
    """

    mode = "shared"

    def __init__(self, max_workers: Optional[int] = None,
                 idle_timeout: float = SHARED_POOL_IDLE_TIMEOUT):
        self.max_workers = max_workers or os.cpu_count() or 1
        self.idle_timeout = idle_timeout
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._timer: Optional[threading.Timer] = None
        self._pending = 0
        self._fallback = DedicatedWorkerPool()

    @property
    def active(self) -> bool:
        """Whether an executor is currently alive."""
        with self._lock:
            return self._executor is not None

    def run(self, task):
        with self._lock:
            self._cancel_timer()
            try:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=self.max_workers, thread_name_prefix="palette-pool")
                    logger.debug(f"Started shared pool with {self.max_workers} workers")
                future = self._executor.submit(call_task, task)
            except RuntimeError as e:
                logger.warning(f"Shared pool unavailable ({e}), using a dedicated worker")
                self._executor = None
                future = None
            else:
                self._pending += 1
        if future is None:
            return self._fallback.run(task)
        future.add_done_callback(self._task_done)
        return future

    def close(self) -> None:
        with self._lock:
            self._cancel_timer()
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def _task_done(self, _future) -> None:
        with self._lock:
            self._pending -= 1
            if self._pending == 0 and self._executor is not None:
                self._timer = threading.Timer(self.idle_timeout, self._recycle)
                self._timer.daemon = True
                self._timer.start()

    def _recycle(self) -> None:
        with self._lock:
            if self._pending or self._executor is None:
                return
            executor, self._executor = self._executor, None
            self._timer = None
        executor.shutdown(wait=False)
        logger.debug("Recycled idle shared pool")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


_shared_pool: Optional[SharedPool] = None
_shared_pool_lock = threading.Lock()


def shared_pool() -> SharedPool:
    """The process-wide shared pool, created on first use."""
    global _shared_pool
    with _shared_pool_lock:
        if _shared_pool is None:
            _shared_pool = SharedPool()
        return _shared_pool


def get_pool(dispatcher: Union[str, TaskPool, Executor]) -> TaskPool:
    """Resolve a dispatcher option into a TaskPool.

    Args:
        dispatcher: 'inline', 'dedicated', 'shared', a TaskPool, or an Executor

    Raises:
        ValueError: For an unknown mode string
    """
    if isinstance(dispatcher, TaskPool):
        return dispatcher
    if isinstance(dispatcher, Executor):
        return ExecutorPool(dispatcher)
    if dispatcher == "inline":
        return InlinePool()
    if dispatcher == "dedicated":
        return DedicatedWorkerPool()
    if dispatcher == "shared":
        return shared_pool()
    raise ValueError(f"Unknown dispatcher {dispatcher!r}, expected one of {MODES}")


def gather(futures: Iterable[Future]) -> list:
    """Wait for every future and return their results in order.

    Raises:
        TaskError: For the first failed future; the others keep running
    """
    results = []
    for future in futures:
        try:
            results.append(future.result())
        except TaskError:
            raise
        except Exception as e:
            raise TaskError(f"Worker failed: {type(e).__name__}: {e}") from e
    return results
