"""Fixed-delay task scheduler backed by a bounded worker pool.

A single scheduler can be shared by many lock managers. Each scheduled task
gets its own ``ScheduledHandle``; cancelling it stops that task only.

Usage:
    scheduler = LeaseScheduler(max_workers=8)
    handle = scheduler.schedule_with_fixed_delay(renew, 1.0, 1.0)
    ...
    handle.cancel()
    scheduler.shutdown()
"""
from __future__ import annotations

import concurrent.futures
import heapq
import itertools
import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ScheduledHandle:
    """Cancellable handle for one task registered with a scheduler."""

    def __init__(self, task: Callable[[], object], delay: float):
        self.task = task
        self.delay = delay
        self._cancelled = threading.Event()

    def cancel(self) -> bool:
        """Stop future runs. A run already in progress is allowed to finish.

        Returns False when the handle was already cancelled.
        """
        if self._cancelled.is_set():
            return False
        self._cancelled.set()
        return True

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class LeaseScheduler:
    """Runs tasks repeatedly with a fixed delay between the end of one run and
    the start of the next, so runs of the same task never overlap.
    """

    def __init__(self, max_workers: int = 8, name: str = "tablelock-scheduler"):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.name = name
        self.max_workers = max_workers
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._queue: List[Tuple[float, int, ScheduledHandle]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._dispatcher: Optional[threading.Thread] = None
        self._shutdown = False

    def schedule_with_fixed_delay(
        self,
        task: Callable[[], object],
        initial_delay: float,
        delay: float,
    ) -> ScheduledHandle:
        """Run ``task`` after ``initial_delay`` seconds, then ``delay`` seconds
        after each run completes, until the returned handle is cancelled.
        """
        if delay <= 0:
            raise ValueError("delay must be positive")
        handle = ScheduledHandle(task, delay)
        with self._cond:
            if self._shutdown:
                raise RuntimeError(f"Scheduler '{self.name}' has been shut down")
            self._ensure_dispatcher()
            self._push(handle, time.monotonic() + max(0.0, initial_delay))
        return handle

    def shutdown(self, wait: bool = True) -> None:
        with self._cond:
            if self._shutdown:
                return
            self._shutdown = True
            for _, _, handle in self._queue:
                handle.cancel()
            self._queue.clear()
            self._cond.notify_all()
        dispatcher = self._dispatcher
        if wait and dispatcher is not None and dispatcher is not threading.current_thread():
            dispatcher.join()
        self._executor.shutdown(wait=wait)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is not None and self._dispatcher.is_alive():
            return
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name=f"{self.name}-dispatcher", daemon=True)
        self._dispatcher.start()

    def _push(self, handle: ScheduledHandle, due: float) -> None:
        # caller holds self._cond
        heapq.heappush(self._queue, (due, next(self._seq), handle))
        self._cond.notify()

    def _dispatch_loop(self) -> None:
        while True:
            with self._cond:
                while not self._shutdown:
                    if not self._queue:
                        self._cond.wait()
                        continue
                    wait_for = self._queue[0][0] - time.monotonic()
                    if wait_for <= 0:
                        break
                    self._cond.wait(wait_for)
                if self._shutdown:
                    return
                _, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            try:
                self._executor.submit(self._run, handle)
            except RuntimeError:
                # executor shut down between the check above and submit
                return

    def _run(self, handle: ScheduledHandle) -> None:
        try:
            handle.task()
        except Exception:
            logger.exception("Scheduled task %r failed", handle.task)
        finally:
            with self._cond:
                if not handle.cancelled and not self._shutdown:
                    self._push(handle, time.monotonic() + handle.delay)
