"""Synchronized playback session.

``SyncSession`` is what a host embeds: give it the player handles, a
``SyncStateManager`` and a scheduler, and it keeps the angles aligned.

Whenever the manager installs a new state (analysis, manual offset, live
difference, reset) the session rebuilds its coordinators for that state,
pauses every player, aligns them on the primary's position and resumes
playback after a short delay if it was playing.
"""

import logging
from contextlib import ExitStack
from pathlib import Path
from typing import Optional, Sequence, Union

from ..config import SyncConfig
from ..errors import AudioSyncError, InvalidSeekValueError, describe_error
from ..notifications import Channel, LoggingSink, NotificationSink
from ..sync.state import SyncState, SyncStateManager
from .clock import ClockSnapshot, PlaybackClockCoordinator
from .guard import SeekGuard
from .player import PlayerHandle, read_time
from .scheduler import ScheduledCall, Scheduler
from .seek import SeekCoordinator

logger = logging.getLogger(__name__)


class SyncSession:
    """Keeps a set of players aligned with the live sync state.

    Args:
        players: Handles indexed by stream; index 0 is the primary.
        manager: Owner of the live ``SyncState``.
        scheduler: Timer and frame source.
        config: Thresholds and delays.
        sink: Receives operator-facing notifications.

    Example:
        >>> with SyncSession(players, manager, scheduler) as session:
        ...     session.play()
        ...     session.seek(42.0)
    """

    def __init__(
        self,
        players: Sequence[PlayerHandle],
        manager: SyncStateManager,
        scheduler: Scheduler,
        config: Optional[SyncConfig] = None,
        sink: Optional[NotificationSink] = None,
    ) -> None:
        if not players:
            raise ValueError("At least one player is required")

        self.players = list(players)
        self.manager = manager
        self.scheduler = scheduler
        self.config = config or SyncConfig()
        self.sink = sink or LoggingSink()
        self.guard = SeekGuard(scheduler, self.config.quiet_window)
        self.snapshots: Channel[ClockSnapshot] = Channel("session")

        self.clock: Optional[PlaybackClockCoordinator] = None
        self.seeker: Optional[SeekCoordinator] = None
        self._resume_call: Optional[ScheduledCall] = None
        self._stack: Optional[ExitStack] = None

    # Lifecycle

    def start(self) -> "SyncSession":
        if self._stack is not None:
            return self

        with ExitStack() as stack:
            stack.callback(self.guard.close)
            stack.callback(self._cancel_resume)
            stack.callback(self._teardown)
            self._build(self.manager.state)
            stack.callback(self.manager.subscribe(self._on_state_replaced))
            self._stack = stack.pop_all()

        logger.info(
            f"Sync session started with {len(self.players)} angles "
            f"({self.manager.state.describe()})"
        )
        return self

    def close(self) -> None:
        """Release every timer, frame request and subscription."""
        stack, self._stack = self._stack, None
        if stack is not None:
            stack.close()
            logger.info("Sync session closed")

    def __enter__(self) -> "SyncSession":
        return self.start()

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def state(self) -> SyncState:
        return self.manager.state

    @property
    def global_time(self) -> float:
        return self.clock.global_time if self.clock is not None else 0.0

    @property
    def playing(self) -> bool:
        return self.clock is not None and self.clock.playing

    # Transport

    def play(self) -> None:
        self._cancel_resume()
        self._require_clock().set_playing(True)

    def pause(self) -> None:
        self._cancel_resume()
        self._require_clock().set_playing(False)

    def seek(self, time: float) -> None:
        """Request a global seek (debounced)."""
        self._require_seeker().seek_global(time)

    def skip(self, delta: float) -> float:
        """Seek relative to the primary's position; returns the requested time."""
        return self._require_seeker().skip(delta)

    def set_playback_rate(self, rate: float) -> None:
        self._require_clock().set_playback_rate(rate)

    # Sync operations

    def resync_audio(
        self,
        analyzer,
        source_a: Optional[Union[str, Path]],
        source_b: Optional[Union[str, Path]],
    ) -> Optional[SyncState]:
        """Run audio analysis on two sources and apply the result.

        Failures are reported through the sink; the current state is kept.
        """
        if not source_a or not source_b:
            self.sink.warning("Audio sync needs two angles with a source file each.")
            return None

        try:
            result = analyzer.analyze(source_a, source_b, progress=self.sink.progress)
        except AudioSyncError as e:
            logger.error(describe_error(e))
            self.sink.warning(e.user_message)
            return None

        state = self.manager.from_analysis(result)
        self.sink.info(f"Audio sync complete: {state.describe()}")
        return state

    def apply_manual_offset(self, seconds: float) -> Optional[SyncState]:
        try:
            return self.manager.from_manual_offset(seconds)
        except InvalidSeekValueError as e:
            logger.warning(f"Rejected manual offset: {e}")
            self.sink.warning(f"Invalid offset: {seconds!r}")
            return None

    def sync_from_players(self) -> Optional[SyncState]:
        """Take the offset from the current positions of the first two players.

        Intended for the dual-scrub workflow: the operator pauses both
        players on the same event, then syncs.
        """
        if len(self.players) < 2:
            self.sink.warning("Live sync needs two angles.")
            return None

        time_a = read_time(self.players[0])
        time_b = read_time(self.players[1])
        if time_a is None or time_b is None:
            self.sink.warning("Both players must be ready to sync from their positions.")
            return None

        return self.manager.from_live_diff(time_a, time_b)

    def reset_sync(self) -> SyncState:
        return self.manager.reset()

    # Internals

    def _build(self, state: SyncState, global_time: Optional[float] = None) -> None:
        clock = PlaybackClockCoordinator(
            self.players, state, self.scheduler, self.guard, self.config
        )
        clock.snapshots.subscribe(self.snapshots.emit)
        clock.start()
        if global_time is not None:
            clock.notify_seek(global_time, manual=False)

        self.clock = clock
        self.seeker = SeekCoordinator(
            self.players, state, self.scheduler, self.guard, clock, self.config
        )

    def _teardown(self) -> None:
        if self.seeker is not None:
            self.seeker.close()
            self.seeker = None
        if self.clock is not None:
            self.clock.close()
            self.clock.snapshots.clear()
            self.clock = None

    def _on_state_replaced(self, state: SyncState) -> None:
        clock = self._require_clock()
        was_playing = clock.playing or self._resume_call is not None
        global_time = clock.global_time

        self._cancel_resume()
        clock.set_playing(False)
        self._teardown()
        self._build(state, global_time)
        self._require_seeker().align_all()

        if was_playing:
            self._resume_call = self.scheduler.call_later(
                self.config.resume_delay, self._resume
            )
        logger.debug(f"Coordinators rebuilt for {state.describe()} (resume={was_playing})")

    def _resume(self) -> None:
        self._resume_call = None
        if self.clock is not None:
            self.clock.set_playing(True)

    def _cancel_resume(self) -> None:
        if self._resume_call is not None:
            self._resume_call.cancel()
            self._resume_call = None

    def _require_clock(self) -> PlaybackClockCoordinator:
        if self.clock is None:
            raise RuntimeError("Sync session is not started")
        return self.clock

    def _require_seeker(self) -> SeekCoordinator:
        if self.seeker is None:
            raise RuntimeError("Sync session is not started")
        return self.seeker


__all__ = ["SyncSession"]
