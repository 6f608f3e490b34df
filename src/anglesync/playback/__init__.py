"""Synchronized playback of several angles."""

from .player import PlayerEvent, PlayerHandle, PlayerStatus
from .scheduler import AsyncioScheduler, ScheduledCall, Scheduler, VirtualScheduler
from .guard import SeekGuard
from .clock import (
    ClockSnapshot,
    PlaybackClockCoordinator,
    StreamPhase,
    TickInput,
    TickSource,
    compute_blocked,
    compute_target_times,
)
from .seek import SeekCoordinator, SeekPlan, plan_seek
from .session import SyncSession

__all__ = [
    "PlayerEvent",
    "PlayerHandle",
    "PlayerStatus",
    "AsyncioScheduler",
    "ScheduledCall",
    "Scheduler",
    "VirtualScheduler",
    "SeekGuard",
    "ClockSnapshot",
    "PlaybackClockCoordinator",
    "StreamPhase",
    "TickInput",
    "TickSource",
    "compute_blocked",
    "compute_target_times",
    "SeekCoordinator",
    "SeekPlan",
    "plan_seek",
    "SyncSession",
]
