"""
Background follow-up queue.

Tasks are consumed by a small pool of daemon threads. Each task sleeps a
random 0 to max_delay seconds first so that follow-ups do not hit the
rate-limited transport in lockstep. Failures are logged and counted; the
submitting request never waits on them.
"""

import logging
import queue
import random
import threading
import time
from typing import Callable, List, Optional, Set

from ..models import FollowUpTask, NodeKey

logger = logging.getLogger(__name__)

_STOP = object()


class FollowUpQueue:
    """Bounded in-process task queue with a fixed worker pool."""

    def __init__(self, handler: Optional[Callable[[FollowUpTask], object]] = None, workers: int = 2,
                 max_delay_s: float = 3.0, maxsize: int = 500,
                 sleep: Callable[[float], None] = time.sleep, rng: Optional[random.Random] = None):
        """
        Initialize the queue. Workers start on the first submit.

        Args:
            handler: Called with each task
            workers: Number of worker threads
            max_delay_s: Upper bound of the random pre-task delay
            maxsize: Queue capacity; submits beyond it are rejected
        """
        self.handler = handler
        self.workers = max(1, workers)
        self.max_delay_s = max_delay_s
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._in_flight: Set[NodeKey] = set()
        self._closed = False

        self.submitted = 0
        self.completed = 0
        self.failed = 0

    def _ensure_workers(self) -> None:
        with self._lock:
            if self._threads:
                return
            for i in range(self.workers):
                thread = threading.Thread(target=self._run, name=f"follow-up-{i}", daemon=True)
                thread.start()
                self._threads.append(thread)

    def submit(self, task: FollowUpTask) -> bool:
        """
        Queue a task without blocking.

        Returns:
            False if the task is already queued, the queue is full or closed
        """
        if self.handler is None:
            raise RuntimeError("FollowUpQueue has no handler")
        with self._lock:
            if self._closed:
                logger.warning(f"Follow-up queue closed; dropping {task.key}")
                return False
            if task.key in self._in_flight:
                logger.debug(f"Follow-up for {task.key} already queued")
                return False
            self._in_flight.add(task.key)
        try:
            self._queue.put_nowait(task)
        except queue.Full:
            with self._lock:
                self._in_flight.discard(task.key)
            logger.warning(f"Follow-up queue full; dropping {task.key}")
            return False

        with self._lock:
            self.submitted += 1
        self._ensure_workers()
        logger.debug(f"Queued follow-up for {task.collection} {task.record_id} (depth {task.depth})")
        return True

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is _STOP:
                    return
                self._process(task)
            finally:
                self._queue.task_done()

    def _process(self, task: FollowUpTask) -> None:
        if self.max_delay_s > 0:
            self._sleep(self._rng.uniform(0, self.max_delay_s))
        try:
            self.handler(task)
        except Exception as e:
            with self._lock:
                self.failed += 1
            logger.error(f"Follow-up for {task.collection} {task.record_id} failed: {e}")
        else:
            with self._lock:
                self.completed += 1
        finally:
            with self._lock:
                self._in_flight.discard(task.key)

    def join(self) -> None:
        """Block until every queued task has been processed."""
        self._queue.join()

    def pending(self) -> int:
        return self._queue.qsize()

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            threads = list(self._threads)
        for _ in threads:
            self._queue.put(_STOP)
        if wait:
            for thread in threads:
                thread.join()

    def stats(self) -> dict:
        with self._lock:
            return {
                "submitted": self.submitted,
                "completed": self.completed,
                "failed": self.failed,
                "pending": self._queue.qsize(),
            }
