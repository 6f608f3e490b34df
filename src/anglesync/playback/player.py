"""Player handle abstraction.

The engine never constructs players. Hosts wrap whatever actually decodes
and renders video in a ``PlayerHandle``; the coordinators re-check the
handle's status before every operation.

A handle that is disposed while an operation is in flight should raise
``PlayerUnavailableError``. The helpers below turn that into a skipped
operation, so coordinators survive players disappearing underneath them.
"""

import logging
import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional

from ..errors import PlayerUnavailableError

logger = logging.getLogger(__name__)


class PlayerStatus(Enum):
    """Lifecycle of a player handle."""
    READY = "ready"
    NOT_READY = "not_ready"
    DISPOSED = "disposed"


class PlayerEvent(str, Enum):
    """Events a player handle emits."""
    TIME_UPDATED = "time-updated"
    READY = "ready"
    FULLSCREEN_CHANGED = "fullscreen-changed"


PlayerCallback = Callable[..., Any]


class PlayerHandle(ABC):
    """Capability the coordinators need from a video player."""

    @abstractmethod
    def status(self) -> PlayerStatus:
        """Current lifecycle status."""

    @abstractmethod
    def get_current_time(self) -> Optional[float]:
        """Playback position in seconds, or None if unknown."""

    @abstractmethod
    def set_current_time(self, seconds: float) -> None:
        """Seek to ``seconds`` (never negative)."""

    @abstractmethod
    def duration(self) -> Optional[float]:
        """Media duration in seconds, or None if not known yet."""

    @abstractmethod
    def play(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def is_paused(self) -> bool:
        pass

    @abstractmethod
    def on(self, event: str, handler: PlayerCallback) -> None:
        """Subscribe ``handler`` to ``event`` (see ``PlayerEvent``)."""

    @abstractmethod
    def off(self, event: str, handler: PlayerCallback) -> None:
        """Remove a subscription made with ``on``."""

    def is_ready(self) -> bool:
        return self.status() is PlayerStatus.READY

    def is_disposed(self) -> bool:
        return self.status() is PlayerStatus.DISPOSED

    def set_playback_rate(self, rate: float) -> None:
        """Change playback speed. Handles without speed control ignore it."""


# =============================================================================
# Safe access helpers
# =============================================================================


def _usable(handle: Optional[PlayerHandle]) -> bool:
    if handle is None:
        return False
    try:
        return handle.is_ready()
    except PlayerUnavailableError:
        return False


def player_status(handle: Optional[PlayerHandle]) -> PlayerStatus:
    """Status of a handle; one that cannot answer counts as disposed."""
    if handle is None:
        return PlayerStatus.DISPOSED
    try:
        return handle.status()
    except PlayerUnavailableError:
        return PlayerStatus.DISPOSED


def read_reported_time(handle: Optional[PlayerHandle]) -> Optional[float]:
    """Current time exactly as a ready handle reports it, unchecked.

    None when the handle is not ready, reports nothing or becomes
    unavailable during the call.
    """
    if not _usable(handle):
        return None
    try:
        value = handle.get_current_time()
    except PlayerUnavailableError as e:
        logger.debug(f"Player unavailable while reading time: {e}")
        return None
    if value is None:
        return None
    return float(value)


def read_time(handle: Optional[PlayerHandle]) -> Optional[float]:
    """Finite, non-negative current time of a ready handle, else None."""
    value = read_reported_time(handle)
    if value is None or not math.isfinite(value) or value < 0:
        return None
    return value


def read_duration(handle: Optional[PlayerHandle]) -> Optional[float]:
    """Positive, finite duration of a ready handle, else None."""
    if not _usable(handle):
        return None
    try:
        value = handle.duration()
    except PlayerUnavailableError as e:
        logger.debug(f"Player unavailable while reading duration: {e}")
        return None
    if value is None:
        return None
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def try_seek(handle: Optional[PlayerHandle], seconds: float) -> bool:
    """Seek a ready handle to ``max(0, seconds)``. Returns True if issued."""
    if not _usable(handle):
        return False
    try:
        handle.set_current_time(max(0.0, seconds))
    except PlayerUnavailableError as e:
        logger.debug(f"Player unavailable while seeking: {e}")
        return False
    return True


def try_play(handle: Optional[PlayerHandle]) -> bool:
    """Start a ready handle. Returns True if issued."""
    if not _usable(handle):
        return False
    try:
        handle.play()
    except PlayerUnavailableError as e:
        logger.debug(f"Player unavailable while starting playback: {e}")
        return False
    return True


def try_pause(handle: Optional[PlayerHandle]) -> bool:
    """Pause a ready handle. Returns True if issued."""
    if not _usable(handle):
        return False
    try:
        handle.pause()
    except PlayerUnavailableError as e:
        logger.debug(f"Player unavailable while pausing: {e}")
        return False
    return True


def try_set_playback_rate(handle: Optional[PlayerHandle], rate: float) -> bool:
    """Change the speed of a ready handle. Returns True if issued."""
    if not _usable(handle):
        return False
    try:
        handle.set_playback_rate(rate)
    except PlayerUnavailableError as e:
        logger.debug(f"Player unavailable while changing playback rate: {e}")
        return False
    return True


def is_paused(handle: Optional[PlayerHandle]) -> Optional[bool]:
    """Paused flag of a ready handle, or None if it cannot be read."""
    if not _usable(handle):
        return None
    try:
        return bool(handle.is_paused())
    except PlayerUnavailableError:
        return None


__all__ = [
    "PlayerStatus",
    "PlayerEvent",
    "PlayerHandle",
    "player_status",
    "read_reported_time",
    "read_time",
    "read_duration",
    "try_seek",
    "try_play",
    "try_pause",
    "try_set_playback_rate",
    "is_paused",
]
