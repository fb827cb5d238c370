"""
=============================================================================
CONNECTION THREAD POOL
=============================================================================

The accept loop must never wait for a client. A client that connects and
then says nothing holds its handler until the I/O timeout (10 seconds by
default). If the accept loop handled clients itself, every other client
would queue behind the silent one.

So each accepted connection becomes a task for a pool of workers:

    ┌─────────────┐   submit()   ┌──────────────────┐   get()   ┌──────────┐
    │ accept loop │ ───────────► │ queue.Queue      │ ────────► │ Worker-0 │
    └─────────────┘  (no block)  │ [task][task]...  │ ────────► │ Worker-1 │
                                 └──────────────────┘ ────────► │ ...      │
                                                                └──────────┘

=============================================================================
ELASTIC SIZING
=============================================================================

A fixed ceiling would let a handful of silent clients occupy every worker
while well-behaved clients wait in the queue. Instead the pool keeps one
rule:

    idle workers >= tasks waiting to start

submit() spawns a worker whenever that rule would break, so a task never
waits behind a stalled client. Every handler is bounded by its socket
timeout, so the number of threads is bounded by the connection rate times
that timeout.

Workers above min_workers retire after idle_timeout seconds without work.

- A task that raises is logged; the worker carries on with the next one.
- shutdown() sends one "poison pill" (None) per worker. The queue is
  unbounded, so this never blocks. Pills queue behind real tasks, so
  connections already accepted are still served.

=============================================================================
"""

import threading
import queue
import logging
from typing import Callable, Optional, Any, List, Tuple
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred call: func(*args)."""
    func: Callable[..., Any]
    args: Tuple = field(default_factory=tuple)


class Worker(threading.Thread):
    """Pulls tasks off the pool's queue until a poison pill or retirement."""

    def __init__(self, pool: "ThreadPool", name: str):
        # daemon=True: a handler stuck on a blocking socket must not keep
        # the process alive after the main thread exits.
        super().__init__(name=name, daemon=True)
        self.pool = pool
        self.state = WorkerState.IDLE

    def run(self):
        logger.debug(f"{self.name} started")

        while True:
            try:
                task = self.pool._task_queue.get(timeout=self.pool.idle_timeout)
            except queue.Empty:
                if self.pool._retire(self):
                    break
                continue

            try:
                if task is None:
                    break
                self.pool._claim()
                self._execute(task)
                self.pool._release()
            finally:
                self.pool._task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"{self.name} stopped")

    def _execute(self, task: Task):
        self.state = WorkerState.BUSY
        try:
            task.func(*task.args)
        except Exception as e:
            # Tasks are expected to handle their own errors; anything that
            # still escapes must not kill the worker.
            logger.exception(f"{self.name} task failed: {e}")
        finally:
            self.state = WorkerState.IDLE


class ThreadPool:
    """
    Elastic pool of worker threads.

    Usage:
        pool = ThreadPool(min_workers=2, name="identd")
        pool.start()
        pool.submit(handle, args=(conn,))
        ...
        pool.shutdown(wait=False)
    """

    def __init__(
        self,
        min_workers: int = 2,
        idle_timeout: float = 30.0,
        name: str = "Worker",
    ):
        self.min_workers = min_workers
        self.idle_timeout = idle_timeout
        self.name = name

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue()
        self._workers: List[Worker] = []
        # Guards _workers, the counters and the flags below
        self._lock = threading.Lock()
        self._idle = 0       # Workers not running a task
        self._pending = 0    # Tasks submitted but not yet claimed
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    @property
    def started(self) -> bool:
        return self._started

    def start(self):
        """Spawn min_workers threads. A second call is a no-op."""
        with self._lock:
            if self._started:
                return
            for _ in range(self.min_workers):
                self._add_worker()
            self._started = True

        logger.debug(f"Thread pool {self.name} started with {self.min_workers} workers")

    def _add_worker(self) -> Worker:
        """Caller must hold self._lock."""
        worker = Worker(self, name=f"{self.name}-{self._next_worker_id}")
        self._next_worker_id += 1
        self._workers.append(worker)
        self._idle += 1
        worker.start()
        return worker

    def submit(self, func: Callable[..., Any], args: Tuple = ()):
        """
        Queue func(*args). Never blocks; spawns a worker if none is free.

        Raises:
            RuntimeError: If the pool is not started or is shutting down.
        """
        with self._lock:
            if not self._started:
                raise RuntimeError("Thread pool not started")
            if self._shutdown:
                raise RuntimeError("Thread pool is shutting down")

            self._pending += 1
            self._task_queue.put_nowait(Task(func=func, args=args))

            if self._idle < self._pending:
                logger.debug(
                    f"Scaling {self.name}: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._add_worker()

    # Worker bookkeeping: called by Worker threads

    def _claim(self):
        with self._lock:
            self._pending -= 1
            self._idle -= 1

    def _release(self):
        with self._lock:
            self._idle += 1

    def _retire(self, worker: Worker) -> bool:
        """Let an idle surplus worker exit. Returns True if it should."""
        with self._lock:
            if self._shutdown or len(self._workers) <= self.min_workers:
                return False
            if self._idle - 1 < self._pending:
                return False
            self._idle -= 1
            self._workers.remove(worker)
            return True

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop all workers. Never blocks unless wait=True.

        Args:
            wait: Join the workers before returning. With wait=False the
                  workers finish queued tasks and exit on their own.
            timeout: Per-worker join timeout when waiting.
        """
        with self._lock:
            if not self._started or self._shutdown:
                return
            self._shutdown = True
            workers = list(self._workers)
            for _ in workers:
                self._task_queue.put_nowait(None)

        if wait:
            for worker in workers:
                worker.join(timeout)

        logger.debug(f"Thread pool {self.name} shut down")

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)
