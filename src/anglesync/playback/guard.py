"""Seek guard shared by the clock and seek coordinators.

A corrective or manual seek makes the player emit a burst of time updates.
While the guard is held, clock ticks still compute snapshots but issue no
seeks of their own; it is released once the quiet window has passed since
the most recent hold.
"""

import logging
from typing import Optional

from .scheduler import ScheduledCall, Scheduler

logger = logging.getLogger(__name__)


class SeekGuard:
    """Boolean "seeking in progress" flag with timed release."""

    def __init__(self, scheduler: Scheduler, quiet_window: float = 0.5) -> None:
        self.scheduler = scheduler
        self.quiet_window = quiet_window
        self._held = False
        self._release_call: Optional[ScheduledCall] = None
        self.held_since: Optional[float] = None

    @property
    def held(self) -> bool:
        return self._held

    def hold(self, duration: Optional[float] = None) -> None:
        """Hold the guard for ``duration`` (default: the quiet window).

        Holding again while held restarts the window.
        """
        if self._release_call is not None:
            self._release_call.cancel()
        if not self._held:
            self.held_since = self.scheduler.now()
        self._held = True

        window = self.quiet_window if duration is None else duration
        self._release_call = self.scheduler.call_later(window, self.release)

    def release(self) -> None:
        """Release immediately."""
        if self._release_call is not None:
            self._release_call.cancel()
            self._release_call = None
        if self._held:
            logger.debug("Seek guard released")
        self._held = False
        self.held_since = None

    def close(self) -> None:
        self.release()

    def __bool__(self) -> bool:
        return self._held


__all__ = ["SeekGuard"]
