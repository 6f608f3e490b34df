"""Sync state for AngleSync.

``SyncState`` is the single source of truth for how two angles line up.
Sign convention, used everywhere in the package:

    primary playback time   = global time
    secondary playback time = global time + offset_seconds

The state is an immutable value. ``SyncStateManager`` owns the live value
and replaces it wholesale on analysis, manual override, live dual-scrub
difference or reset, persisting and announcing every replacement.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..errors import InvalidSeekValueError, PersistenceError
from ..notifications import Channel
from .store import SyncStore

logger = logging.getLogger(__name__)


def _require_finite(value: Any, what: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidSeekValueError(f"{what} must be a number, got {value!r}", value)
    if not math.isfinite(number):
        raise InvalidSeekValueError(f"{what} must be finite, got {value!r}", value)
    return number


@dataclass(frozen=True)
class SyncState:
    """Offset between the primary and every secondary stream.

    Attributes:
        offset_seconds: Secondary time minus global (primary) time.
        is_analyzed: Whether the offset is in effect. Unanalyzed states
            play every stream at the global time.
        confidence: Estimation confidence in [0, 1]; None when the offset
            did not come from analysis.
    """
    offset_seconds: float = 0.0
    is_analyzed: bool = False
    confidence: Optional[float] = None

    def __post_init__(self) -> None:
        offset = _require_finite(self.offset_seconds, "offset_seconds")
        object.__setattr__(self, "offset_seconds", offset)
        object.__setattr__(self, "is_analyzed", bool(self.is_analyzed))

        if self.confidence is not None:
            confidence = float(self.confidence)
            if not 0.0 <= confidence <= 1.0:
                raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
            object.__setattr__(self, "confidence", confidence)

    # Derived values

    @property
    def effective_offset(self) -> float:
        """Offset applied to secondaries (0 unless analyzed)."""
        return self.offset_seconds if self.is_analyzed else 0.0

    @property
    def has_preroll(self) -> bool:
        """Secondaries wait for the primary to reach ``|offset|``."""
        return self.is_analyzed and self.offset_seconds < 0

    @property
    def min_global_time(self) -> float:
        """Earliest global time a seek may request."""
        return self.offset_seconds if self.has_preroll else 0.0

    def target_time(self, stream_index: int, global_time: float) -> float:
        """Player time for ``stream_index`` at ``global_time`` (never negative)."""
        if stream_index == 0:
            return max(0.0, global_time)
        return max(0.0, global_time + self.effective_offset)

    def is_blocked(self, stream_index: int, global_time: float) -> bool:
        """Whether a secondary is still in pre-roll at ``global_time``."""
        return (
            stream_index > 0
            and self.has_preroll
            and global_time < abs(self.offset_seconds)
        )

    # Factories

    @classmethod
    def from_analysis(cls, result: Any) -> "SyncState":
        """State from an ``AudioAnalysisResult``."""
        return cls(
            offset_seconds=result.offset_seconds,
            is_analyzed=True,
            confidence=result.confidence,
        )

    @classmethod
    def reset_state(cls) -> "SyncState":
        """The state after an explicit reset."""
        return cls(offset_seconds=0.0, is_analyzed=False, confidence=0.0)

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        """JSON form stored under a package's ``syncData`` key."""
        return {
            "syncOffset": self.offset_seconds,
            "isAnalyzed": self.is_analyzed,
            "confidenceScore": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncState":
        """Parse the stored JSON form.

        ``syncOffset`` must be a finite number; a non-numeric
        ``confidenceScore`` is read as unknown.

        Raises:
            ValueError: If the block is not a usable sync record.
        """
        if not isinstance(data, dict):
            raise ValueError("syncData must be an object")

        offset = data.get("syncOffset")
        if isinstance(offset, bool) or not isinstance(offset, (int, float)):
            raise ValueError(f"syncOffset must be a number, got {offset!r}")

        confidence = data.get("confidenceScore")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = None
        elif not 0.0 <= confidence <= 1.0:
            confidence = None

        return cls(
            offset_seconds=offset,
            is_analyzed=bool(data.get("isAnalyzed", False)),
            confidence=confidence,
        )

    def describe(self) -> str:
        """One-line human-readable summary."""
        if not self.is_analyzed:
            return "not synchronized"
        text = f"offset {self.offset_seconds:+.3f}s"
        if self.confidence is not None:
            text += f" (confidence {self.confidence:.0%})"
        return text


class SyncStateManager:
    """Holds the live ``SyncState``.

    Every replacement builds a new value, installs it, saves it through
    the store (failures are logged, never raised) and then notifies
    subscribers in registration order.

    Args:
        store: Optional persistence collaborator.
        session_key: Key passed to the store (for packages, the package
            directory).
        initial: Starting state; defaults to ``SyncState()``.
    """

    def __init__(
        self,
        store: Optional[SyncStore] = None,
        session_key: Optional[str] = None,
        initial: Optional[SyncState] = None,
    ) -> None:
        self.store = store
        self.session_key = session_key
        self._state = initial or SyncState()
        self.changes: Channel[SyncState] = Channel("sync-state")

    @property
    def state(self) -> SyncState:
        return self._state

    def subscribe(self, callback: Callable[[SyncState], Any]) -> Callable[[], bool]:
        """Call ``callback`` with each new state. Returns an unsubscribe function."""
        return self.changes.subscribe(callback)

    def load(self) -> Optional[SyncState]:
        """Install the stored state, if the store has one.

        Subscribers are not notified; nothing has been played yet.
        """
        if self.store is None or self.session_key is None:
            return None

        try:
            stored = self.store.load(self.session_key)
        except PersistenceError as e:
            logger.warning(f"Could not load sync state for {self.session_key}: {e}")
            return None

        if stored is not None:
            self._state = stored
            logger.info(f"Loaded sync state: {stored.describe()}")
        return stored

    def replace(self, state: SyncState, reason: str = "update") -> SyncState:
        """Install ``state`` as the live value."""
        self._state = state
        logger.info(f"Sync state replaced ({reason}): {state.describe()}")
        self._persist(state)
        self.changes.emit(state)
        return state

    def from_analysis(self, result: Any) -> SyncState:
        """Apply an analysis result."""
        return self.replace(SyncState.from_analysis(result), "analysis")

    def from_manual_offset(self, seconds: float) -> SyncState:
        """Apply an operator-entered offset, keeping the previous confidence.

        Raises:
            InvalidSeekValueError: If ``seconds`` is not a finite number.
        """
        offset = _require_finite(seconds, "Manual offset")
        state = SyncState(
            offset_seconds=offset,
            is_analyzed=True,
            confidence=self._state.confidence,
        )
        return self.replace(state, "manual")

    def from_live_diff(self, time_a: float, time_b: float) -> SyncState:
        """Apply the difference of two players paused on the same event.

        ``offset = time_b - time_a``: the secondary's time minus the
        primary's, matching the analysis sign convention.

        Raises:
            InvalidSeekValueError: If either time is not a finite number.
        """
        primary = _require_finite(time_a, "Primary time")
        secondary = _require_finite(time_b, "Secondary time")
        state = SyncState(
            offset_seconds=secondary - primary,
            is_analyzed=True,
            confidence=None,
        )
        return self.replace(state, "live difference")

    def reset(self) -> SyncState:
        """Drop the offset: ``(0, not analyzed, confidence 0)``."""
        return self.replace(SyncState.reset_state(), "reset")

    def _persist(self, state: SyncState) -> None:
        if self.store is None or self.session_key is None:
            return
        try:
            saved = self.store.save(self.session_key, state)
        except (PersistenceError, OSError) as e:
            logger.warning(f"Failed to save sync state for {self.session_key}: {e}")
            return
        if not saved:
            logger.warning(f"Sync state for {self.session_key} was not saved")


__all__ = ["SyncState", "SyncStateManager"]
