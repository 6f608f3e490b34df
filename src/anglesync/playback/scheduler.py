"""Timer and frame scheduling for the playback coordinators.

Everything the coordinators do happens on one thread, driven by three kinds
of callbacks:

- one-shot timers (``call_later``): seek debounce, quiet windows, resume delay;
- periodic timers (``call_every``): the fallback time poll;
- frame requests (``request_frame``): the animation-frame driven tick.

Each returns a ``ScheduledCall`` that can be cancelled. ``VirtualScheduler``
runs on simulated time for headless hosts and tests; ``AsyncioScheduler``
runs on an asyncio event loop and emulates animation frames at a fixed rate.
"""

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

FrameCallback = Callable[[float], Any]


class ScheduledCall:
    """Cancellable handle for a timer or frame request."""

    def __init__(
        self,
        callback: Callable[..., Any],
        interval: Optional[float] = None,
        is_frame: bool = False,
    ) -> None:
        self.callback = callback
        self.interval = interval
        self.is_frame = is_frame
        self._cancelled = False
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<ScheduledCall {getattr(self.callback, '__name__', self.callback)!s} {state}>"


class Scheduler(ABC):
    """Source of time and callbacks for the coordinators."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic time in seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ScheduledCall:
        """Run ``callback(*args)`` once after ``delay`` seconds."""

    @abstractmethod
    def call_every(self, interval: float, callback: Callable[[], Any]) -> ScheduledCall:
        """Run ``callback()`` every ``interval`` seconds until cancelled."""

    @abstractmethod
    def request_frame(self, callback: FrameCallback) -> ScheduledCall:
        """Run ``callback(timestamp)`` once on the next frame."""


def _run(call: ScheduledCall, *args: Any) -> None:
    """Invoke a scheduled callback, logging (not propagating) its failure."""
    try:
        call.callback(*args)
    except Exception as e:
        logger.error(f"Scheduled callback {call!r} failed: {e}", exc_info=True)


# =============================================================================
# Virtual time
# =============================================================================


class _Entry:
    __slots__ = ("when", "seq", "call", "args")

    def __init__(self, when: float, seq: int, call: ScheduledCall, args: tuple) -> None:
        self.when = when
        self.seq = seq
        self.call = call
        self.args = args

    def __lt__(self, other: "_Entry") -> bool:
        # Earlier first; same instant runs in scheduling order
        return (self.when, self.seq) < (other.when, other.seq)


class VirtualScheduler(Scheduler):
    """Deterministic scheduler on simulated time.

    Nothing runs until ``advance`` or ``run_until`` moves the clock; due
    callbacks then run in time order, ties in the order they were scheduled.
    Frame requests fire at the next multiple of ``frame_interval``.

    Example:
        >>> scheduler = VirtualScheduler()
        >>> scheduler.call_later(0.5, print, "fired")
        >>> scheduler.advance(1.0)
        fired
    """

    def __init__(self, start: float = 0.0, frame_rate: float = 60.0) -> None:
        self._now = float(start)
        self.frame_interval = 1.0 / frame_rate
        self._queue: List[_Entry] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def _push(self, when: float, call: ScheduledCall, args: tuple = ()) -> ScheduledCall:
        heapq.heappush(self._queue, _Entry(when, next(self._seq), call, args))
        return call

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ScheduledCall:
        return self._push(self._now + max(0.0, delay), ScheduledCall(callback), args)

    def call_every(self, interval: float, callback: Callable[[], Any]) -> ScheduledCall:
        if interval <= 0:
            raise ValueError("interval must be positive")
        return self._push(self._now + interval, ScheduledCall(callback, interval))

    def request_frame(self, callback: FrameCallback) -> ScheduledCall:
        frames = int(self._now / self.frame_interval + 1e-9) + 1
        return self._push(frames * self.frame_interval, ScheduledCall(callback, is_frame=True))

    def pending(self) -> int:
        """Number of scheduled, not cancelled callbacks."""
        return sum(1 for entry in self._queue if not entry.call.cancelled)

    def run_until(self, deadline: float) -> int:
        """Run every callback due at or before ``deadline``; returns how many ran."""
        ran = 0
        while self._queue and self._queue[0].when <= deadline + 1e-12:
            entry = heapq.heappop(self._queue)
            if entry.call.cancelled:
                continue
            self._now = max(self._now, entry.when)

            if entry.call.is_frame:
                _run(entry.call, self._now)
            else:
                _run(entry.call, *entry.args)
            ran += 1

            if entry.call.interval is not None and not entry.call.cancelled:
                self._push(entry.when + entry.call.interval, entry.call)

        self._now = max(self._now, deadline)
        return ran

    def advance(self, seconds: float) -> int:
        """Move the clock forward by ``seconds``, running what falls due."""
        return self.run_until(self._now + seconds)


# =============================================================================
# asyncio
# =============================================================================


class AsyncioScheduler(Scheduler):
    """Scheduler backed by an asyncio event loop.

    Args:
        loop: Event loop to schedule on (default: the running loop).
        frame_rate: Rate at which frame requests are served.
    """

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        frame_rate: float = 60.0,
    ) -> None:
        self.loop = loop or asyncio.get_running_loop()
        self.frame_interval = 1.0 / frame_rate

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ScheduledCall:
        call = ScheduledCall(callback)

        def fire() -> None:
            if not call.cancelled:
                _run(call, *args)

        self._attach(call, self.loop.call_later(max(0.0, delay), fire))
        return call

    def call_every(self, interval: float, callback: Callable[[], Any]) -> ScheduledCall:
        if interval <= 0:
            raise ValueError("interval must be positive")
        call = ScheduledCall(callback, interval)
        next_at = [self.loop.time() + interval]

        def fire() -> None:
            if call.cancelled:
                return
            _run(call)
            if not call.cancelled:
                next_at[0] += interval
                self._attach(call, self.loop.call_at(next_at[0], fire))

        self._attach(call, self.loop.call_at(next_at[0], fire))
        return call

    def request_frame(self, callback: FrameCallback) -> ScheduledCall:
        call = ScheduledCall(callback)

        def fire() -> None:
            if not call.cancelled:
                _run(call, self.loop.time())

        self._attach(call, self.loop.call_later(self.frame_interval, fire))
        return call

    @staticmethod
    def _attach(call: ScheduledCall, timer: asyncio.TimerHandle) -> None:
        call._timer = timer


__all__ = [
    "ScheduledCall",
    "Scheduler",
    "VirtualScheduler",
    "AsyncioScheduler",
]
