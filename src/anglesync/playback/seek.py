"""Global seeks across every angle.

A seek is requested in global time and fanned out to each player:

    stream 0 -> max(0, g)
    stream i -> max(0, g + offset)     (offset only when analyzed)

Requests are debounced: the last one inside the debounce window wins and
is applied when the window closes. Applying holds the seek guard so the
clock does not fight the burst of time updates that follows, and starts a
new playback session on the clock.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from ..config import SyncConfig
from ..errors import InvalidSeekValueError
from ..notifications import Channel
from ..sync.state import SyncState
from .clock import PlaybackClockCoordinator
from .guard import SeekGuard
from .player import PlayerHandle, read_duration, read_time, try_pause, try_seek
from .scheduler import ScheduledCall, Scheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeekPlan:
    """Where one global seek puts every stream."""
    requested: float
    global_time: float
    targets: Tuple[float, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requested": self.requested,
            "global_time": self.global_time,
            "targets": list(self.targets),
        }


def clamp_global_time(state: SyncState, time: float) -> float:
    """Clamp a requested global time to the start of the timeline.

    With a negative analyzed offset the timeline starts at ``offset``:
    requests before it, and requests between it and 0 (where neither
    stream has content yet), land on ``offset``.
    """
    min_allowed = state.min_global_time
    if time < min_allowed:
        return min_allowed
    if state.has_preroll and time < 0:
        return min_allowed
    return time


def plan_seek(
    state: SyncState,
    time: Any,
    stream_count: int,
    max_time: Optional[float] = None,
) -> SeekPlan:
    """Compute per-stream targets for a global seek to ``time``.

    Args:
        state: Sync state in effect.
        time: Requested global time.
        stream_count: Number of streams.
        max_time: Largest acceptable request; None accepts any finite value.

    Raises:
        InvalidSeekValueError: If ``time`` is not finite or beyond ``max_time``.
    """
    try:
        requested = float(time)
    except (TypeError, ValueError):
        raise InvalidSeekValueError(f"Seek time must be a number, got {time!r}", time)
    if not math.isfinite(requested):
        raise InvalidSeekValueError(f"Seek time must be finite, got {time!r}", time)
    if max_time is not None and requested > max_time:
        raise InvalidSeekValueError(
            f"Seek time {requested:.3f}s is beyond the allowed {max_time:.3f}s", time
        )

    global_time = clamp_global_time(state, requested)
    targets = tuple(state.target_time(index, global_time) for index in range(stream_count))
    return SeekPlan(requested=requested, global_time=global_time, targets=targets)


class SeekCoordinator:
    """Applies global seeks, skips and realignments to every player.

    Args:
        players: Handles indexed by stream; index 0 is the primary.
        state: Sync state in effect.
        scheduler: Timer source for the debounce window.
        guard: Seek guard shared with the clock.
        clock: Clock coordinator told about each applied seek.
        config: Debounce window and duration limits.
    """

    def __init__(
        self,
        players: Sequence[PlayerHandle],
        state: SyncState,
        scheduler: Scheduler,
        guard: SeekGuard,
        clock: Optional[PlaybackClockCoordinator] = None,
        config: Optional[SyncConfig] = None,
    ) -> None:
        self.players = list(players)
        self.state = state
        self.scheduler = scheduler
        self.guard = guard
        self.clock = clock
        self.config = config or SyncConfig()
        self.applied: Channel[SeekPlan] = Channel("seek")

        self._pending: Optional[Any] = None
        self._has_pending = False
        self._timer: Optional[ScheduledCall] = None

    @property
    def has_pending(self) -> bool:
        return self._has_pending

    def max_request_time(self) -> float:
        """Largest global time a seek may request."""
        duration = read_duration(self.players[0]) if self.players else None
        if duration is None:
            return self.config.max_unknown_duration
        return duration + 10.0

    def seek_global(self, time: Any) -> None:
        """Request a global seek; applied when the debounce window closes."""
        self._pending = time
        self._has_pending = True
        if self._timer is None:
            self._timer = self.scheduler.call_later(self.config.seek_debounce, self.flush)

    def flush(self) -> Optional[SeekPlan]:
        """Apply the pending request now. Returns the plan, if one was applied."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._has_pending:
            return None

        time, self._pending, self._has_pending = self._pending, None, False
        return self.apply(time)

    def apply(self, time: Any, manual: bool = True) -> Optional[SeekPlan]:
        """Seek every player for global ``time`` immediately.

        Invalid values are logged and rejected; players keep their positions.
        """
        try:
            plan = plan_seek(self.state, time, len(self.players), self.max_request_time())
        except InvalidSeekValueError as e:
            logger.warning(f"Rejected seek: {e}")
            return None

        for index, player in enumerate(self.players):
            if read_duration(player) is None:
                logger.debug(f"Skipping seek on stream {index}: not ready or duration unknown")
                continue
            try_seek(player, plan.targets[index])

        self.guard.hold()
        if self.clock is not None:
            self.clock.notify_seek(plan.global_time, manual=manual)

        if plan.global_time != plan.requested:
            logger.info(f"Seek to {plan.requested:.3f}s clamped to {plan.global_time:.3f}s")
        else:
            logger.debug(f"Seek to {plan.global_time:.3f}s -> {plan.targets}")
        self.applied.emit(plan)
        return plan

    def skip(self, delta: float) -> float:
        """Request a seek relative to the primary's position.

        The result is clamped to ``[min_allowed, primary duration]``.

        Returns:
            The requested global time.
        """
        base = read_time(self.players[0]) if self.players else None
        if base is None:
            base = self.clock.global_time if self.clock is not None else 0.0

        min_allowed = self.state.min_global_time
        target = max(min_allowed, base + float(delta))
        duration = read_duration(self.players[0]) if self.players else None
        if duration is not None and duration > min_allowed:
            target = min(duration, target)

        self.seek_global(target)
        return target

    def align_all(self, state: Optional[SyncState] = None) -> SeekPlan:
        """Pause every player and seek it to its target for the primary's position.

        Used after the sync state changes.
        """
        if state is not None:
            self.state = state

        base = read_time(self.players[0]) if self.players else None
        if base is None:
            base = self.clock.global_time if self.clock is not None else 0.0

        for player in self.players:
            try_pause(player)

        targets = tuple(
            self.state.target_time(index, base) for index in range(len(self.players))
        )
        for index in range(1, len(self.players)):
            try_seek(self.players[index], targets[index])

        self.guard.hold()
        if self.clock is not None:
            self.clock.notify_seek(base, manual=False)

        plan = SeekPlan(requested=base, global_time=base, targets=targets)
        logger.info(f"Aligned {len(self.players)} streams at {base:.3f}s ({self.state.describe()})")
        self.applied.emit(plan)
        return plan

    def close(self) -> None:
        """Drop any pending request and its timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending, self._has_pending = None, False


__all__ = ["SeekPlan", "clamp_global_time", "plan_seek", "SeekCoordinator"]
