"""Audio extraction and offset estimation."""

from .waveform import (
    AudioDecoder,
    DecodeContext,
    FFmpegAudioDecoder,
    WaveformData,
    WaveformExtractor,
    generate_peaks,
)
from .estimator import (
    AudioAnalysisResult,
    CrossCorrelator,
    OffsetEstimator,
    SearchPhase,
    correlate,
)

__all__ = [
    "AudioDecoder",
    "DecodeContext",
    "FFmpegAudioDecoder",
    "WaveformData",
    "WaveformExtractor",
    "generate_peaks",
    "AudioAnalysisResult",
    "CrossCorrelator",
    "OffsetEstimator",
    "SearchPhase",
    "correlate",
]
