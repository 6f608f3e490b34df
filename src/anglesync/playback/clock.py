"""Playback clock coordinator.

Keeps every secondary player aligned with the primary according to the
live ``SyncState``:

    target[0] = max(0, g)
    target[i] = max(0, g + offset)      (offset only when analyzed)

where ``g`` is the global time. Each tick gathers one immutable
``TickInput`` from the players, advances ``g``, updates the per-stream
phase and publishes a ``ClockSnapshot``.

Ticks come from three places: animation frames while playing, a periodic
poll, and the primary's time-updated event. Frame ticks correct drift
above 0.01 s; poll and event ticks above 0.1 s (0.05 s right after a
manual seek). No correction is issued while the seek guard is held, and
at most one per stream per tick.

With a negative offset the secondary's content starts ``|offset|`` seconds
into the primary. Until ``g`` reaches that point the secondary is in
pre-roll: held paused at 0 and reported as blocked.
"""

import logging
import math
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Sequence, Tuple

from ..config import SyncConfig
from ..notifications import Channel
from ..sync.state import SyncState
from .guard import SeekGuard
from .player import (
    PlayerEvent,
    PlayerHandle,
    PlayerStatus,
    is_paused,
    player_status,
    read_duration,
    read_reported_time,
    read_time,
    try_pause,
    try_play,
    try_seek,
    try_set_playback_rate,
)
from .scheduler import ScheduledCall, Scheduler

logger = logging.getLogger(__name__)

# The primary counts as finished within this distance of its end
END_TOLERANCE = 0.01

# Frame deltas outside (0, MAX_FRAME_DELTA) do not advance the clock
MAX_FRAME_DELTA = 1.0


class StreamPhase(Enum):
    """Per-stream playback phase."""
    PRE_ROLL = "pre_roll"
    ACTIVE = "active"


class TickSource(Enum):
    """What triggered a clock tick."""
    FRAME = "frame"
    POLL = "poll"
    EVENT = "time-updated"
    SEEK = "seek"
    STATE = "state"


@dataclass(frozen=True)
class TickInput:
    """Everything one tick reads from the outside world.

    Attributes:
        source: Trigger of the tick.
        timestamp: Scheduler time of the tick.
        frame_delta: Seconds since the previous frame tick (0 if unknown).
        primary_time: Validated primary report, None if absent or rejected.
        primary_duration: Primary duration if known.
        secondary_time: Reported time of stream 1, if available.
        playing: Whether synchronized playback is on.
        playback_rate: Current playback speed.
    """
    source: TickSource
    timestamp: float
    frame_delta: float = 0.0
    primary_time: Optional[float] = None
    primary_duration: Optional[float] = None
    secondary_time: Optional[float] = None
    playing: bool = False
    playback_rate: float = 1.0


@dataclass(frozen=True)
class ClockSnapshot:
    """Result of one tick."""
    global_time: float
    targets: Tuple[float, ...]
    blocked: Tuple[bool, ...]
    phases: Tuple[StreamPhase, ...]
    source: TickSource
    timestamp: float

    def target(self, stream_index: int) -> float:
        return self.targets[stream_index]


# =============================================================================
# Pure computations
# =============================================================================


def compute_target_times(state: SyncState, global_time: float, stream_count: int) -> Tuple[float, ...]:
    """Per-stream player times for ``global_time``; every value is >= 0."""
    return tuple(state.target_time(index, global_time) for index in range(stream_count))


def compute_blocked(state: SyncState, global_time: float, stream_count: int) -> Tuple[bool, ...]:
    """Per-stream pre-roll flags for ``global_time``."""
    return tuple(state.is_blocked(index, global_time) for index in range(stream_count))


def preroll_threshold(state: SyncState, epsilon: float) -> float:
    """Global time at which a pre-rolling secondary becomes active."""
    return abs(state.offset_seconds) - epsilon


def initial_phases(
    state: SyncState,
    global_time: float,
    stream_count: int,
    epsilon: float,
) -> Tuple[StreamPhase, ...]:
    """Phases at the start of a playback session beginning at ``global_time``."""
    preroll = state.has_preroll and global_time < preroll_threshold(state, epsilon)
    return tuple(
        StreamPhase.PRE_ROLL if index > 0 and preroll else StreamPhase.ACTIVE
        for index in range(stream_count)
    )


def primary_has_ended(primary_time: Optional[float], primary_duration: Optional[float]) -> bool:
    return (
        primary_time is not None
        and primary_duration is not None
        and primary_time >= primary_duration - END_TOLERANCE
    )


def next_global_time(
    global_time: float,
    tick: TickInput,
    state: SyncState,
    last_primary_report: Optional[float],
) -> Tuple[float, str]:
    """Advance the global clock by one tick.

    Returns:
        ``(global_time, reason)`` where reason is "secondary" (primary
        finished, clock follows an analyzed secondary), "primary" (a new
        primary report), "estimated" (frame delta times playback rate) or
        "held" (nothing new).
    """
    if (
        state.is_analyzed
        and tick.secondary_time is not None
        and primary_has_ended(tick.primary_time, tick.primary_duration)
    ):
        followed = tick.secondary_time - state.offset_seconds
        if followed >= global_time:
            return followed, "secondary"

    if tick.primary_time is not None and tick.primary_time != last_primary_report:
        return tick.primary_time, "primary"

    if (
        tick.source is TickSource.FRAME
        and tick.playing
        and 0.0 < tick.frame_delta < MAX_FRAME_DELTA
        and not primary_has_ended(tick.primary_time, tick.primary_duration)
    ):
        return global_time + tick.frame_delta * tick.playback_rate, "estimated"

    return global_time, "held"


# =============================================================================
# Coordinator
# =============================================================================


class PlaybackClockCoordinator:
    """Drives the global clock and keeps secondaries on target.

    Args:
        players: Handles indexed by stream; index 0 is the primary.
        state: Sync state in effect.
        scheduler: Source of frames, timers and time.
        guard: Seek guard shared with the seek coordinator.
        config: Thresholds and intervals.

    Use ``start()``/``close()`` or the context manager protocol; ``close``
    releases the poll timer, the pending frame request and the player
    subscription.
    """

    def __init__(
        self,
        players: Sequence[PlayerHandle],
        state: SyncState,
        scheduler: Scheduler,
        guard: SeekGuard,
        config: Optional[SyncConfig] = None,
    ) -> None:
        if not players:
            raise ValueError("At least one player is required")

        self.players = list(players)
        self.state = state
        self.scheduler = scheduler
        self.guard = guard
        self.config = config or SyncConfig()
        self.snapshots: Channel[ClockSnapshot] = Channel("clock")

        self._global_time = 0.0
        self._playing = False
        self._playback_rate = 1.0
        self._last_primary_report: Optional[float] = None
        self._last_frame_ts: Optional[float] = None
        self._last_manual_seek = -math.inf
        self._phases = initial_phases(
            state, 0.0, len(self.players), self.config.preroll_epsilon
        )
        self._snapshot: Optional[ClockSnapshot] = None
        self._frame_call: Optional[ScheduledCall] = None
        self._stack: Optional[ExitStack] = None

    # Lifecycle

    def start(self) -> "PlaybackClockCoordinator":
        """Subscribe to the primary and start the fallback poll."""
        if self._stack is not None:
            return self

        with ExitStack() as stack:
            primary = self.players[0]
            primary.on(PlayerEvent.TIME_UPDATED.value, self._on_time_updated)
            stack.callback(primary.off, PlayerEvent.TIME_UPDATED.value, self._on_time_updated)

            poll = self.scheduler.call_every(self.config.poll_interval, self.poll)
            stack.callback(poll.cancel)
            stack.callback(self._cancel_frame)

            self._stack = stack.pop_all()

        logger.debug(f"Clock coordinator started for {len(self.players)} streams")
        return self

    def close(self) -> None:
        """Release every timer, frame request and subscription."""
        stack, self._stack = self._stack, None
        if stack is not None:
            stack.close()
            logger.debug("Clock coordinator closed")

    def __enter__(self) -> "PlaybackClockCoordinator":
        return self.start()

    def __exit__(self, *args) -> None:
        self.close()

    # Read-only views

    @property
    def global_time(self) -> float:
        return self._global_time

    @property
    def phases(self) -> Tuple[StreamPhase, ...]:
        return self._phases

    @property
    def playing(self) -> bool:
        return self._playing

    @property
    def playback_rate(self) -> float:
        return self._playback_rate

    @property
    def last_snapshot(self) -> Optional[ClockSnapshot]:
        return self._snapshot

    @property
    def last_manual_seek(self) -> float:
        return self._last_manual_seek

    def target_times(self, global_time: Optional[float] = None) -> Tuple[float, ...]:
        """Per-stream targets for ``global_time`` (default: the current one)."""
        g = self._global_time if global_time is None else global_time
        return compute_target_times(self.state, g, len(self.players))

    # Commands

    def set_playing(self, playing: bool) -> None:
        """Play-all / pause-all.

        Starting playback seeks every active secondary to its target, parks
        pre-rolling ones at 0, then plays every stream that is not blocked.
        Players that are not ready yet are started once they report ready.
        """
        playing = bool(playing)
        if playing == self._playing:
            return
        self._playing = playing

        if not playing:
            self._cancel_frame()
            self._last_frame_ts = None
            for player in self.players:
                try_pause(player)
            logger.info(f"Playback paused at {self._global_time:.3f}s")
            return

        targets = self.target_times()
        for index, player in enumerate(self.players):
            status = player_status(player)
            if status is PlayerStatus.DISPOSED:
                continue
            if status is not PlayerStatus.READY:
                self._play_when_ready(index, player)
                continue
            if index > 0 and self._phases[index] is StreamPhase.PRE_ROLL:
                try_pause(player)
                try_seek(player, 0.0)
                continue
            if index > 0:
                try_seek(player, targets[index])
            try_play(player)

        self.guard.hold()
        self._last_frame_ts = None
        self._request_frame()
        logger.info(f"Playback started at {self._global_time:.3f}s")

    def set_playback_rate(self, rate: float) -> None:
        """Change playback speed on every player."""
        rate = float(rate)
        if not math.isfinite(rate) or rate <= 0:
            raise ValueError(f"Playback rate must be positive, got {rate}")
        self._playback_rate = rate
        for player in self.players:
            try_set_playback_rate(player, rate)

    def notify_seek(self, global_time: float, manual: bool = True) -> None:
        """Record a global seek; a new playback session starts at ``global_time``.

        Called by the seek coordinator after it has positioned the players.
        """
        self._global_time = global_time
        self._last_primary_report = max(0.0, global_time)
        self._last_frame_ts = None
        if manual:
            self._last_manual_seek = self.scheduler.now()
        self._phases = initial_phases(
            self.state, global_time, len(self.players), self.config.preroll_epsilon
        )
        self._publish(TickSource.SEEK, self.scheduler.now())

    def update_state(self, state: SyncState) -> None:
        """Switch to a new sync state; a new playback session starts."""
        self.state = state
        self._phases = initial_phases(
            state, self._global_time, len(self.players), self.config.preroll_epsilon
        )
        self._publish(TickSource.STATE, self.scheduler.now())

    # Ticks

    def poll(self) -> ClockSnapshot:
        return self.tick(TickSource.POLL)

    def tick(self, source: TickSource, timestamp: Optional[float] = None) -> ClockSnapshot:
        """Run one clock tick and publish its snapshot."""
        now = self.scheduler.now() if timestamp is None else timestamp
        tick = self._gather(source, now)

        previous = self._global_time
        self._global_time, reason = next_global_time(
            previous, tick, self.state, self._last_primary_report
        )
        if tick.primary_time is not None:
            self._last_primary_report = tick.primary_time
        if reason in ("primary", "secondary") and self._last_frame_ts is not None:
            # Frame estimates count from the latest report, whichever tick saw it
            self._last_frame_ts = max(self._last_frame_ts, now)
        if reason == "secondary" and previous < self._global_time:
            logger.debug(f"Primary finished; clock follows secondary at {self._global_time:.3f}s")

        corrections_allowed = tick.playing and not self.guard.held
        activated = self._update_phases(tick)

        snapshot = self._publish(source, now)
        if corrections_allowed:
            self._correct_drift(snapshot, source, now, skip=activated)

        return snapshot

    # Internals

    def _gather(self, source: TickSource, now: float) -> TickInput:
        frame_delta = 0.0
        if source is TickSource.FRAME:
            if self._last_frame_ts is not None:
                frame_delta = now - self._last_frame_ts
            self._last_frame_ts = now

        primary = self.players[0]
        duration = read_duration(primary)
        secondary_time = read_time(self.players[1]) if len(self.players) > 1 else None

        return TickInput(
            source=source,
            timestamp=now,
            frame_delta=frame_delta,
            primary_time=self._read_primary(primary, duration),
            primary_duration=duration,
            secondary_time=secondary_time,
            playing=self._playing,
            playback_rate=self._playback_rate,
        )

    def _read_primary(self, primary: PlayerHandle, duration: Optional[float]) -> Optional[float]:
        """Primary report, or None when unavailable or out of range."""
        value = read_reported_time(primary)
        if value is None:
            return None

        limit = duration + 10.0 if duration is not None else self.config.max_unknown_duration
        if math.isnan(value) or value < 0 or value > limit:
            logger.warning(
                f"Ignoring out-of-range primary time {value!r} "
                f"(limit {limit:.1f}s); keeping {self._global_time:.3f}s"
            )
            return None
        return value

    def _update_phases(self, tick: TickInput) -> FrozenSet[int]:
        """Advance pre-roll phases; returns the streams that just became active."""
        if not self.state.has_preroll:
            return frozenset()

        activated = set()

        threshold = preroll_threshold(self.state, self.config.preroll_epsilon)
        phases = list(self._phases)
        for index in range(1, len(self.players)):
            player = self.players[index]
            if phases[index] is StreamPhase.PRE_ROLL:
                if self._global_time >= threshold:
                    phases[index] = StreamPhase.ACTIVE
                    activated.add(index)
                    target = self.state.target_time(index, self._global_time)
                    logger.info(
                        f"Stream {index} leaves pre-roll at g={self._global_time:.3f}s "
                        f"(target {target:.3f}s)"
                    )
                    if try_seek(player, target):
                        self.guard.hold()
                        if tick.playing:
                            try_play(player)
                elif tick.playing and is_paused(player) is False:
                    try_pause(player)
                    try_seek(player, 0.0)
        self._phases = tuple(phases)
        return frozenset(activated)

    def _publish(self, source: TickSource, now: float) -> ClockSnapshot:
        g = self._global_time
        count = len(self.players)
        snapshot = ClockSnapshot(
            global_time=g,
            targets=compute_target_times(self.state, g, count),
            blocked=tuple(
                index > 0 and phase is StreamPhase.PRE_ROLL
                for index, phase in enumerate(self._phases)
            ),
            phases=self._phases,
            source=source,
            timestamp=now,
        )
        self._snapshot = snapshot
        self.snapshots.emit(snapshot)
        return snapshot

    def _drift_threshold(self, source: TickSource, now: float) -> float:
        if now - self._last_manual_seek <= self.config.post_seek_window:
            return self.config.post_seek_drift_threshold
        if source is TickSource.FRAME:
            return self.config.frame_drift_threshold
        return self.config.poll_drift_threshold

    def _correct_drift(
        self,
        snapshot: ClockSnapshot,
        source: TickSource,
        now: float,
        skip: FrozenSet[int] = frozenset(),
    ) -> None:
        threshold = self._drift_threshold(source, now)
        for index in range(1, len(self.players)):
            # Streams that just left pre-roll were already seeked this tick
            if index in skip or snapshot.phases[index] is not StreamPhase.ACTIVE:
                continue
            player = self.players[index]
            actual = read_time(player)
            if actual is None:
                continue

            target = snapshot.targets[index]
            duration = read_duration(player)
            if duration is not None and target >= duration - END_TOLERANCE:
                continue

            drift = actual - target
            if abs(drift) > threshold:
                if try_seek(player, target):
                    self.guard.hold()
                    logger.debug(
                        f"Drift correction on stream {index}: {drift:+.3f}s "
                        f"(threshold {threshold}s, {source.value} tick)"
                    )

    def _on_time_updated(self, *args) -> None:
        self.tick(TickSource.EVENT)

    def _on_frame(self, timestamp: float) -> None:
        self._frame_call = None
        if not self._playing:
            return
        try:
            self.tick(TickSource.FRAME, timestamp)
        finally:
            self._request_frame()

    def _request_frame(self) -> None:
        if self._frame_call is None and self._playing and self._stack is not None:
            self._frame_call = self.scheduler.request_frame(self._on_frame)

    def _cancel_frame(self) -> None:
        if self._frame_call is not None:
            self._frame_call.cancel()
            self._frame_call = None

    def _play_when_ready(self, index: int, player: PlayerHandle) -> None:
        """Seek and start ``player`` once it reports ready."""
        event = PlayerEvent.READY.value

        def on_ready(*args) -> None:
            player.off(event, on_ready)
            if not self._playing or self._stack is None:
                return
            if index > 0 and self._phases[index] is StreamPhase.PRE_ROLL:
                try_seek(player, 0.0)
                return
            try_seek(player, self.state.target_time(index, self._global_time))
            try_play(player)

        player.on(event, on_ready)
        if self._stack is not None:
            self._stack.callback(player.off, event, on_ready)


__all__ = [
    "END_TOLERANCE",
    "StreamPhase",
    "TickSource",
    "TickInput",
    "ClockSnapshot",
    "compute_target_times",
    "compute_blocked",
    "preroll_threshold",
    "initial_phases",
    "primary_has_ended",
    "next_global_time",
    "PlaybackClockCoordinator",
]
