"""Notification interfaces for AngleSync.

Two explicit channels replace ad-hoc callbacks:

- ``NotificationSink`` receives operator-facing progress, info and warning
  messages from long-running work (audio analysis, re-sync).
- ``Channel`` is a small ordered pub/sub used for state and clock snapshots.
  Subscribers are called in registration order; a failing subscriber is
  logged and does not stop the others.

Example usage:

    >>> channel = Channel("sync-state")
    >>> unsubscribe = channel.subscribe(lambda state: print(state.offset_seconds))
    >>> channel.emit(state)
    >>> unsubscribe()
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Notification sinks
# =============================================================================


class NotificationSink(ABC):
    """Receiver for operator-facing notifications."""

    @abstractmethod
    def progress(self, stage: str, percent: float) -> None:
        """Report progress of a named stage (``percent`` in [0, 100])."""

    @abstractmethod
    def info(self, message: str) -> None:
        """Report an informational message."""

    @abstractmethod
    def warning(self, message: str) -> None:
        """Report a recoverable problem."""


class LoggingSink(NotificationSink):
    """Default sink: forwards every notification to the logging system."""

    def __init__(self, logger_name: str = "anglesync.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    def progress(self, stage: str, percent: float) -> None:
        self._logger.info("%s (%.0f%%)", stage, percent)

    def info(self, message: str) -> None:
        self._logger.info(message)

    def warning(self, message: str) -> None:
        self._logger.warning(message)


class NullSink(NotificationSink):
    """Sink that discards everything."""

    def progress(self, stage: str, percent: float) -> None:
        pass

    def info(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        pass


class CallbackSink(NotificationSink):
    """Adapts a plain ``progress(stage, percent)`` callable to a sink.

    Info and warning messages go to ``fallback`` (a LoggingSink by default).
    """

    def __init__(
        self,
        on_progress: Callable[[str, float], None],
        fallback: Optional[NotificationSink] = None,
    ) -> None:
        self._on_progress = on_progress
        self._fallback = fallback or LoggingSink()

    def progress(self, stage: str, percent: float) -> None:
        self._on_progress(stage, percent)

    def info(self, message: str) -> None:
        self._fallback.info(message)

    def warning(self, message: str) -> None:
        self._fallback.warning(message)


# =============================================================================
# Channel
# =============================================================================


class Channel(Generic[T]):
    """Ordered, synchronous publish/subscribe channel for one value type."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: List[Callable[[T], Any]] = []

    def subscribe(self, callback: Callable[[T], Any]) -> Callable[[], bool]:
        """Register a subscriber.

        Returns:
            A function that unsubscribes ``callback`` when called.
        """
        if callback not in self._subscribers:
            self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Callable[[T], Any]) -> bool:
        """Remove a subscriber. Returns True if it was registered."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)
            return True
        return False

    def emit(self, value: T) -> None:
        """Deliver ``value`` to every subscriber in registration order."""
        for callback in list(self._subscribers):
            self._safe_call(callback, value)

    def _safe_call(self, callback: Callable[[T], Any], value: T) -> None:
        try:
            callback(value)
        except Exception as e:
            logger.error(
                f"Error in subscriber of channel '{self.name}': {e}",
                exc_info=True,
            )

    def clear(self) -> None:
        """Remove all subscribers."""
        self._subscribers.clear()

    def __len__(self) -> int:
        return len(self._subscribers)


__all__ = [
    "NotificationSink",
    "LoggingSink",
    "NullSink",
    "CallbackSink",
    "Channel",
]
