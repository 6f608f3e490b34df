"""Error handling module for the AngleSync engine.

Provides the exception hierarchy and detailed error context used by the
waveform extractor, the offset estimator and the playback coordinators.

Decode and estimation failures are terminal for an analysis run and bubble
to the caller. Playback failures (disposed players, bad seek values) are
recovered locally by the coordinators and only ever logged.
"""
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


USER_SYNC_FAILURE_MESSAGE = (
    "Audio sync failed - verify both sources contain an audio track."
)


# =============================================================================
# Error Context
# =============================================================================

@dataclass
class ErrorContext:
    """Detailed context for debugging errors.

    Captures the stage and operation that failed plus whatever the failing
    subprocess reported.
    """
    stage: str
    operation: str
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    source: Optional[str] = None
    command: Optional[List[str]] = None
    stderr: Optional[str] = None
    return_code: Optional[int] = None
    additional_info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "stage": self.stage,
            "operation": self.operation,
            "timestamp": self.timestamp,
            "source": self.source,
            "command": self.command,
            "stderr": self.stderr,
            "return_code": self.return_code,
            "additional_info": self.additional_info,
        }

    def __str__(self) -> str:
        """Human-readable error context."""
        lines = [
            f"Stage: {self.stage}",
            f"Operation: {self.operation}",
            f"Timestamp: {self.timestamp}",
        ]

        if self.source:
            lines.append(f"Source: {self.source}")
        if self.command:
            lines.append(f"Command: {' '.join(self.command)}")
        if self.return_code is not None:
            lines.append(f"Return code: {self.return_code}")
        if self.stderr:
            lines.append(f"Stderr: {self.stderr[:500]}")
        if self.additional_info:
            lines.append(f"Details: {self.additional_info}")

        return "\n".join(lines)


def create_error_context(
    stage: str,
    operation: str,
    source: Optional[Union[str, Path]] = None,
    command: Optional[List[str]] = None,
    stderr: Optional[Union[str, bytes]] = None,
    return_code: Optional[int] = None,
    **additional_info: Any
) -> ErrorContext:
    """Create an error context, normalising paths and raw stderr bytes."""
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")

    return ErrorContext(
        stage=stage,
        operation=operation,
        source=str(source) if source is not None else None,
        command=[str(part) for part in command] if command else None,
        stderr=stderr,
        return_code=return_code,
        additional_info=additional_info,
    )


# =============================================================================
# Error Classification
# =============================================================================

class AnglesyncError(Exception):
    """Base exception for all AngleSync errors."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.context = context


class AudioDecodeError(AnglesyncError):
    """Source is unreadable, has no audio track, or decoding failed."""
    pass


class AudioSyncError(AnglesyncError):
    """Terminal failure of an audio sync analysis run.

    Carries a message suitable for showing to the operator; the technical
    cause is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str = USER_SYNC_FAILURE_MESSAGE,
        context: Optional[ErrorContext] = None,
        user_message: str = USER_SYNC_FAILURE_MESSAGE,
    ):
        super().__init__(message, context)
        self.user_message = user_message


class PlayerUnavailableError(AnglesyncError):
    """A player handle was disposed or is not usable for this operation."""
    pass


class InvalidSeekValueError(AnglesyncError, ValueError):
    """A requested time is NaN, infinite or outside the allowed range."""

    def __init__(self, message: str, value: Any = None):
        super().__init__(message)
        self.value = value


class ConfigurationError(AnglesyncError, ValueError):
    """Invalid configuration."""
    pass


class PersistenceError(AnglesyncError):
    """Sync state could not be stored or loaded."""
    pass


class DependencyError(AnglesyncError):
    """Missing or incompatible external tool (ffmpeg, ffprobe)."""
    pass


def describe_error(error: BaseException) -> str:
    """Format an error and its context for a log line."""
    message = f"{type(error).__name__}: {error}"
    context = getattr(error, "context", None)
    if context is not None:
        message = f"{message}\n{context}"
    return message


__all__ = [
    "USER_SYNC_FAILURE_MESSAGE",
    "ErrorContext",
    "create_error_context",
    "AnglesyncError",
    "AudioDecodeError",
    "AudioSyncError",
    "PlayerUnavailableError",
    "InvalidSeekValueError",
    "ConfigurationError",
    "PersistenceError",
    "DependencyError",
    "describe_error",
]
