"""Configuration module for the AngleSync engine."""
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from .errors import ConfigurationError


@dataclass
class SyncConfig:
    """Tunables for audio analysis and synchronized playback.

    Attributes:
        analysis_sample_rate: Rate (Hz) audio is decoded at for analysis.
            Lower rates make the sample-level search cheaper.
        max_offset_seconds: Largest offset the coarse search considers (+/-).
        analysis_length_seconds: Leading audio window used for correlation.
        coarse_step_seconds: Lag step of the coarse pass (~0.6 video frames).
        fine_range_seconds: Half-width of the refinement pass around the
            coarse best.
        fine_step_seconds: Lag step of the refinement pass (one video frame).
        ultra_fine_range_seconds: Half-width of the sample-level pass.
        peak_count: Number of buckets in the peak envelope.
        ffmpeg_timeout: Seconds allowed for decoding one source.
        decode_full_track: Decode whole sources. By default only the
            leading ``analysis_span_seconds`` are decoded, so waveform
            durations and peak envelopes cover that span only.

        preroll_epsilon: Tolerance used for the pre-roll -> active switch.
        frame_drift_threshold: Drift (s) that triggers a correction on a
            frame-driven tick.
        poll_drift_threshold: Drift (s) that triggers a correction on a
            periodic poll tick.
        post_seek_drift_threshold: Drift (s) used right after a manual seek.
        post_seek_window: How long (s) after a manual seek the tighter
            threshold applies.
        poll_interval: Period (s) of the fallback poll.
        quiet_window: How long (s) the seek guard is held after any seek.
        seek_debounce: Window (s) in which seek requests are coalesced.
        resume_delay: Delay (s) before playback resumes after re-alignment.
        frame_rate: Frame callback rate used by schedulers that emulate
            animation frames.
        max_unknown_duration: Upper bound (s) for reported times when the
            primary's duration is unknown.
    """

    analysis_sample_rate: int = 8000
    max_offset_seconds: float = 30.0
    analysis_length_seconds: float = 20.0
    coarse_step_seconds: float = 0.02
    fine_range_seconds: float = 2.0
    fine_step_seconds: float = 1.0 / 30.0
    ultra_fine_range_seconds: float = 0.2
    peak_count: int = 1000
    ffmpeg_timeout: float = 300.0
    decode_full_track: bool = False

    preroll_epsilon: float = 0.05
    frame_drift_threshold: float = 0.01
    poll_drift_threshold: float = 0.1
    post_seek_drift_threshold: float = 0.05
    post_seek_window: float = 0.1
    poll_interval: float = 0.2
    quiet_window: float = 0.5
    seek_debounce: float = 0.05
    resume_delay: float = 0.3
    frame_rate: float = 60.0
    max_unknown_duration: float = 7200.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if int(self.analysis_sample_rate) != self.analysis_sample_rate or self.analysis_sample_rate <= 0:
            raise ConfigurationError("analysis_sample_rate must be a positive integer")
        self.analysis_sample_rate = int(self.analysis_sample_rate)

        positive = (
            "max_offset_seconds",
            "analysis_length_seconds",
            "coarse_step_seconds",
            "fine_step_seconds",
            "ffmpeg_timeout",
            "poll_interval",
            "frame_rate",
            "max_unknown_duration",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        non_negative = (
            "fine_range_seconds",
            "ultra_fine_range_seconds",
            "preroll_epsilon",
            "frame_drift_threshold",
            "poll_drift_threshold",
            "post_seek_drift_threshold",
            "post_seek_window",
            "quiet_window",
            "seek_debounce",
            "resume_delay",
        )
        for name in non_negative:
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")

        if self.peak_count < 1:
            raise ConfigurationError("peak_count must be at least 1")

        if self.coarse_step_seconds > self.max_offset_seconds:
            raise ConfigurationError(
                "coarse_step_seconds must not exceed max_offset_seconds"
            )

    @property
    def analysis_span_seconds(self) -> float:
        """Leading audio the offset search can read from either source."""
        reach = self.max_offset_seconds + self.fine_range_seconds + self.ultra_fine_range_seconds
        # One second of slack for step rounding
        return reach + self.analysis_length_seconds + 1.0

    @property
    def decode_limit_seconds(self) -> Optional[float]:
        """Cap passed to the decoder, or None to decode everything."""
        return None if self.decode_full_track else self.analysis_span_seconds

    # Derived sample counts

    def seconds_to_samples(self, seconds: float) -> int:
        """Convert seconds to a whole number of analysis samples (floored)."""
        return int(seconds * self.analysis_sample_rate)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfig":
        """Create a SyncConfig from a dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        return cls(**data)


__all__ = ["SyncConfig"]
