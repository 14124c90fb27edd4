"""Cancellable scheduled-task facility for the control thread.

Two implementations share one interface:

- ``ThreadScheduler`` runs callbacks on ``threading.Timer`` threads, each
  callback serialised under the scheduler's control lock so timer callbacks
  never interleave with note input handled under the same lock.
- ``ManualScheduler`` keeps a virtual clock that only moves when ``advance``
  is called. Used for deterministic playback and for tests.
"""
import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TaskHandle:
    """Identifies one scheduled task. Cancelling is idempotent."""

    _ids = itertools.count(1)

    def __init__(self, scheduler: 'Scheduler', interval: Optional[float] = None):
        self.id = next(self._ids)
        self.interval = interval
        self.cancelled = False
        self._scheduler = scheduler

    def __repr__(self):
        kind = f"every {self.interval:.4f}s" if self.interval else "once"
        state = "cancelled" if self.cancelled else "active"
        return f"TaskHandle(#{self.id}, {kind}, {state})"

    def cancel(self):
        if not self.cancelled:
            self.cancelled = True
            self._scheduler._forget(self)


class Scheduler:
    """Interface for scheduling control-plane callbacks. Times are in seconds."""

    def __init__(self):
        self.lock = threading.RLock()

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable, *args) -> TaskHandle:
        raise NotImplementedError

    def call_every(self, interval: float, callback: Callable, *args) -> TaskHandle:
        """Run ``callback`` every ``interval`` seconds; the first run is one interval from now."""
        raise NotImplementedError

    def shutdown(self):
        """Cancel every outstanding task."""
        raise NotImplementedError

    def _forget(self, handle: TaskHandle):
        pass

    def _run(self, handle: TaskHandle, callback: Callable, args: tuple):
        if handle.cancelled:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Scheduled task %r failed", handle)


class ThreadScheduler(Scheduler):
    """Wall-clock scheduler backed by daemon ``threading.Timer`` threads."""

    def __init__(self):
        super().__init__()
        self._origin = time.monotonic()
        self._timers: Dict[int, threading.Timer] = {}

    def now(self) -> float:
        return time.monotonic() - self._origin

    def call_later(self, delay: float, callback: Callable, *args) -> TaskHandle:
        handle = TaskHandle(self)
        self._arm(handle, max(0.0, delay), callback, args)
        return handle

    def call_every(self, interval: float, callback: Callable, *args) -> TaskHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TaskHandle(self, interval)
        self._arm(handle, interval, callback, args)
        return handle

    def shutdown(self):
        with self.lock:
            for timer in list(self._timers.values()):
                timer.cancel()
            self._timers.clear()

    def _arm(self, handle: TaskHandle, delay: float, callback: Callable, args: tuple):
        timer = threading.Timer(delay, self._fire, args=(handle, callback, args))
        timer.daemon = True
        with self.lock:
            self._timers[handle.id] = timer
        timer.start()

    def _fire(self, handle: TaskHandle, callback: Callable, args: tuple):
        with self.lock:
            if handle.cancelled:
                return
            if handle.interval is None:
                self._timers.pop(handle.id, None)
            self._run(handle, callback, args)
            if handle.interval is not None and not handle.cancelled:
                self._arm(handle, handle.interval, callback, args)

    def _forget(self, handle: TaskHandle):
        with self.lock:
            timer = self._timers.pop(handle.id, None)
        if timer is not None:
            timer.cancel()


class ManualScheduler(Scheduler):
    """Virtual-time scheduler. Tasks due at the same time run in scheduling order."""

    def __init__(self, start_time: float = 0.0):
        super().__init__()
        self._now = start_time
        self._queue: List[Tuple[float, int, TaskHandle, Callable, tuple]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable, *args) -> TaskHandle:
        handle = TaskHandle(self)
        self._push(self._now + max(0.0, delay), handle, callback, args)
        return handle

    def call_every(self, interval: float, callback: Callable, *args) -> TaskHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TaskHandle(self, interval)
        self._push(self._now + interval, handle, callback, args)
        return handle

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every task that falls due.

        Returns:
            Number of callbacks that ran.
        """
        target = self._now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target + 1e-12:
            due, _, handle, callback, args = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            with self.lock:
                self._run(handle, callback, args)
            ran += 1
            if handle.interval is not None and not handle.cancelled:
                self._push(due + handle.interval, handle, callback, args)
        self._now = target
        return ran

    def pending(self) -> int:
        """Number of live (not cancelled) queued tasks."""
        return sum(1 for entry in self._queue if not entry[2].cancelled)

    def shutdown(self):
        for entry in self._queue:
            entry[2].cancelled = True
        self._queue.clear()

    def _push(self, due: float, handle: TaskHandle, callback: Callable, args: tuple):
        heapq.heappush(self._queue, (due, next(self._seq), handle, callback, args))
