"""
Timer service used by nodes for election timeouts and heartbeats.

All durations are expressed in milliseconds. Two schedulers are provided:
AsyncioScheduler runs callbacks on an asyncio event loop, ManualScheduler
keeps a virtual clock that only moves when advance() is called, which makes
elections fully reproducible in tests.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Set, Tuple
import asyncio
import heapq
import itertools
import logging


class TimerHandle:
    """
    Handle to a scheduled callback. Cancelling is idempotent.
    """

    def __init__(self, callback: Callable[[], None], interval: Optional[float] = None):
        self.callback = callback
        self.interval = interval
        self._cancelled = False
        self._on_cancel: Optional[Callable[['TimerHandle'], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def periodic(self) -> bool:
        return self.interval is not None

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel:
            self._on_cancel(self)


class Scheduler(ABC):
    """
    Abstract base class for timer services.

    A scheduler runs one-shot and periodic callbacks on a single sequential
    timeline and lets callers cancel them through the returned handle.
    """

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """
        Schedule a one-shot callback.

        Args:
            delay: Delay in milliseconds.
            callback: The callable to run.

        Returns:
            A handle that cancels the callback.
        """
        pass

    @abstractmethod
    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        """
        Schedule a callback that runs every `interval` milliseconds until the
        handle is cancelled. The first run happens after one interval.

        Args:
            interval: Period in milliseconds.
            callback: The callable to run.

        Returns:
            A handle that cancels every future run.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """
        Cancel every outstanding handle and release the scheduler.
        """
        pass


class AsyncioScheduler(Scheduler):
    """
    Scheduler backed by an asyncio event loop.

    Must be used from the thread that runs the loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Initialize a new asyncio scheduler.

        Args:
            loop: The loop to schedule on. If None, the running loop is used
                when the first timer is scheduled.
        """
        self._loop = loop
        self._handles: Set[TimerHandle] = set()
        self._loop_handles = {}
        self._closed = False
        self.logger = logging.getLogger("raft.timer")

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(callback)
        self._arm(handle, delay)
        return handle

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        handle = TimerHandle(callback, interval)
        self._arm(handle, interval)
        return handle

    def _arm(self, handle: TimerHandle, delay: float) -> None:
        if self._closed:
            handle.cancel()
            return
        handle._on_cancel = self._forget
        self._handles.add(handle)
        self._loop_handles[handle] = self._get_loop().call_later(
            max(delay, 0) / 1000, self._fire, handle
        )

    def _fire(self, handle: TimerHandle) -> None:
        self._loop_handles.pop(handle, None)
        if handle.cancelled:
            return
        if handle.periodic:
            self._arm(handle, handle.interval)
        else:
            self._handles.discard(handle)
        try:
            handle.callback()
        except Exception:
            self.logger.exception("Timer callback failed")

    def _forget(self, handle: TimerHandle) -> None:
        self._handles.discard(handle)
        loop_handle = self._loop_handles.pop(handle, None)
        if loop_handle:
            loop_handle.cancel()

    @property
    def pending(self) -> int:
        return len(self._handles)

    def close(self) -> None:
        self._closed = True
        for handle in list(self._handles):
            handle.cancel()


class ManualScheduler(Scheduler):
    """
    Scheduler driven by a virtual clock.

    Nothing runs until advance() is called; callbacks then fire in due-time
    order, ties broken by scheduling order.
    """

    def __init__(self):
        self._now = 0.0
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()
        self._closed = False

    @property
    def now(self) -> float:
        """Current virtual time in milliseconds."""
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(callback)
        self._push(handle, self._now + max(delay, 0))
        return handle

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        handle = TimerHandle(callback, interval)
        self._push(handle, self._now + interval)
        return handle

    def _push(self, handle: TimerHandle, due: float) -> None:
        if self._closed:
            handle.cancel()
            return
        heapq.heappush(self._queue, (due, next(self._counter), handle))

    def advance(self, delta: float) -> int:
        """
        Move the virtual clock forward, running every callback that becomes due.

        Args:
            delta: Milliseconds to advance by.

        Returns:
            The number of callbacks that ran.
        """
        target = self._now + delta
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            if handle.periodic:
                self._push(handle, due + handle.interval)
            handle.callback()
            fired += 1
        self._now = target
        return fired

    def close(self) -> None:
        self._closed = True
        for _, _, handle in self._queue:
            handle.cancel()
        self._queue.clear()
