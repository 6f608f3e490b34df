"""Audio sync analysis of two camera angles.

Extracts the audio of both sources and estimates the offset between them
by cross-correlation. Progress runs from 0 to 100:

    10       extracting audio of angle 1
    30       extracting audio of angle 2
    40..100  offset search (coarse, refine, sample-level)
"""

import logging
from pathlib import Path
from typing import Callable, Optional, Union

from .audio.estimator import AudioAnalysisResult, OffsetEstimator
from .audio.waveform import WaveformExtractor
from .config import SyncConfig
from .errors import (
    USER_SYNC_FAILURE_MESSAGE,
    AnglesyncError,
    AudioSyncError,
    create_error_context,
)
from .notifications import LoggingSink, NotificationSink

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]


class AudioSyncAnalyzer:
    """Estimates the offset between two angles from their audio.

    Example:
        >>> analyzer = AudioSyncAnalyzer(SyncConfig(max_offset_seconds=10))
        >>> result = analyzer.analyze("angle1.mp4", "angle2.mp4")
        >>> print(f"Offset: {result.offset_seconds:+.3f}s")
    """

    # Minimum confidence for an offset worth trusting without review
    MIN_CONFIDENCE = 0.5

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        extractor: Optional[WaveformExtractor] = None,
        estimator: Optional[OffsetEstimator] = None,
        sink: Optional[NotificationSink] = None,
    ) -> None:
        """Initialize the analyzer.

        Args:
            config: Analysis parameters.
            extractor: Waveform extractor (default: ffmpeg based).
            estimator: Offset estimator.
            sink: Receives progress when ``analyze`` gets no callback.
        """
        self.config = config or SyncConfig()
        self.extractor = extractor or WaveformExtractor(self.config)
        self.estimator = estimator or OffsetEstimator(self.config)
        self.sink = sink or LoggingSink()

    def analyze(
        self,
        source_a: Union[str, Path],
        source_b: Union[str, Path],
        progress: Optional[ProgressCallback] = None,
    ) -> AudioAnalysisResult:
        """Estimate the offset of ``source_b`` relative to ``source_a``.

        Args:
            source_a: Primary angle.
            source_b: Secondary angle.
            progress: Optional ``(stage, percent)`` callback.

        Returns:
            AudioAnalysisResult; ``offset_seconds`` is secondary time minus
            primary time for the same moment.

        Raises:
            AudioSyncError: If either source cannot be decoded or the
                search fails. The cause is chained.
        """
        report = progress or self.sink.progress
        logger.info(f"Analyzing audio sync: {source_a} <-> {source_b}")

        try:
            report("Extracting audio (angle 1)...", 10.0)
            waveform_a = self.extractor.extract(source_a)

            report("Extracting audio (angle 2)...", 30.0)
            waveform_b = self.extractor.extract(source_b)

            result = self.estimator.estimate(waveform_a, waveform_b, progress=report)
        except (AnglesyncError, ValueError) as e:
            logger.error(f"Audio sync analysis failed: {e}")
            raise AudioSyncError(
                f"Audio sync analysis failed: {e}",
                create_error_context(
                    "analysis",
                    "analyze",
                    source=f"{source_a} <-> {source_b}",
                    cause=type(e).__name__,
                ),
                user_message=USER_SYNC_FAILURE_MESSAGE,
            ) from e

        report("Analysis complete", 100.0)

        if result.confidence < self.MIN_CONFIDENCE:
            logger.warning(
                f"Low confidence offset {result.offset_seconds:+.3f}s "
                f"({result.confidence:.0%}); verify manually"
            )
        else:
            logger.info(
                f"Offset {result.offset_seconds:+.3f}s (confidence {result.confidence:.0%})"
            )
        return result


__all__ = ["AudioSyncAnalyzer", "ProgressCallback"]
