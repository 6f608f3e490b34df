"""AngleSync - audio-based synchronization of multi-angle video."""
__version__ = "0.4.0"

from .config import SyncConfig

from .errors import (
    AnglesyncError,
    AudioDecodeError,
    AudioSyncError,
    ConfigurationError,
    DependencyError,
    ErrorContext,
    InvalidSeekValueError,
    PersistenceError,
    PlayerUnavailableError,
)

from .notifications import (
    CallbackSink,
    Channel,
    LoggingSink,
    NotificationSink,
    NullSink,
)

# Audio analysis
from .audio import (
    AudioAnalysisResult,
    OffsetEstimator,
    WaveformData,
    WaveformExtractor,
)
from .analyzer import AudioSyncAnalyzer

# Sync state
from .sync import (
    MemorySyncStore,
    PackageConfigStore,
    SyncState,
    SyncStateManager,
    SyncStore,
)

# Playback
from .playback import (
    AsyncioScheduler,
    ClockSnapshot,
    PlaybackClockCoordinator,
    PlayerEvent,
    PlayerHandle,
    PlayerStatus,
    Scheduler,
    SeekCoordinator,
    SeekGuard,
    StreamPhase,
    SyncSession,
    VirtualScheduler,
)

__all__ = [
    "__version__",
    "SyncConfig",
    "AnglesyncError",
    "AudioDecodeError",
    "AudioSyncError",
    "ConfigurationError",
    "DependencyError",
    "ErrorContext",
    "InvalidSeekValueError",
    "PersistenceError",
    "PlayerUnavailableError",
    "CallbackSink",
    "Channel",
    "LoggingSink",
    "NotificationSink",
    "NullSink",
    "AudioAnalysisResult",
    "OffsetEstimator",
    "WaveformData",
    "WaveformExtractor",
    "AudioSyncAnalyzer",
    "MemorySyncStore",
    "PackageConfigStore",
    "SyncState",
    "SyncStateManager",
    "SyncStore",
    "AsyncioScheduler",
    "ClockSnapshot",
    "PlaybackClockCoordinator",
    "PlayerEvent",
    "PlayerHandle",
    "PlayerStatus",
    "Scheduler",
    "SeekCoordinator",
    "SeekGuard",
    "StreamPhase",
    "SyncSession",
    "VirtualScheduler",
]
