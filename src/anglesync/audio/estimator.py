"""Audio offset estimation for AngleSync.

Finds the time offset between two recordings of the same event by
cross-correlating the leading section of their audio.

Search strategy (one correlation function, three resolutions):

1. Coarse:     every ``coarse_step`` (0.02 s, ~0.6 video frames) across
               +/- ``max_offset`` seconds.
2. Refinement: one video frame (1/30 s) steps within +/- 2 s of the
               coarse best.
3. Ultra-fine: single-sample steps within +/- 0.2 s of the refined best.

Each pass starts from the previous best and only moves on a strictly
higher correlation, so the reported correlation never decreases from one
pass to the next and the earliest lag wins ties.

Offset convention: a positive offset means ``a[t]`` lines up with
``b[t + offset]``; stream B has to be advanced by the offset to match A.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import numpy as np

from ..config import SyncConfig
from .waveform import WaveformData

logger = logging.getLogger(__name__)

# Per-sample variance at or below this is treated as silence
VARIANCE_FLOOR = 1e-12

# Coarse-pass progress is reported every this many evaluations
PROGRESS_INTERVAL = 100

ProgressCallback = Callable[[str, float], None]


class CrossCorrelator:
    """Pearson correlation of two buffers at arbitrary integer lags.

    Prefix sums of both buffers are computed once, so each lag only costs
    one dot product over the overlapping window.

    Args:
        data1: Reference buffer.
        data2: Buffer compared against ``data1``.
        window: Maximum number of aligned sample pairs per lag.
    """

    def __init__(self, data1: np.ndarray, data2: np.ndarray, window: int) -> None:
        self.data1 = np.asarray(data1, dtype=np.float64)
        self.data2 = np.asarray(data2, dtype=np.float64)
        self.window = int(window)

        self._sum1 = np.concatenate(([0.0], np.cumsum(self.data1)))
        self._sq1 = np.concatenate(([0.0], np.cumsum(self.data1 * self.data1)))
        self._sum2 = np.concatenate(([0.0], np.cumsum(self.data2)))
        self._sq2 = np.concatenate(([0.0], np.cumsum(self.data2 * self.data2)))

    def at(self, lag: int) -> float:
        """Correlation with ``data1[t]`` paired to ``data2[t + lag]``.

        Returns -1.0 when the buffers do not overlap at this lag or either
        side is silent; otherwise a value clipped to [-1, 1].
        """
        lag = int(lag)
        start1 = max(0, -lag)
        start2 = max(0, lag)
        n = min(self.window, len(self.data1) - start1, len(self.data2) - start2)
        if n <= 0:
            return -1.0

        end1 = start1 + n
        end2 = start2 + n

        mean1 = (self._sum1[end1] - self._sum1[start1]) / n
        mean2 = (self._sum2[end2] - self._sum2[start2]) / n
        var1 = (self._sq1[end1] - self._sq1[start1]) / n - mean1 * mean1
        var2 = (self._sq2[end2] - self._sq2[start2]) / n - mean2 * mean2
        if var1 <= VARIANCE_FLOOR or var2 <= VARIANCE_FLOOR:
            return -1.0

        product = float(np.dot(self.data1[start1:end1], self.data2[start2:end2]))
        covariance = product / n - mean1 * mean2
        correlation = covariance / math.sqrt(var1 * var2)
        if not math.isfinite(correlation):
            return -1.0
        return max(-1.0, min(1.0, correlation))


def correlate(data1: np.ndarray, data2: np.ndarray, lag: int, window: int) -> float:
    """Pearson correlation of ``data1[t]`` and ``data2[t + lag]``.

    At most ``window`` pairs are used, starting at ``max(0, -lag)`` in
    ``data1`` and ``max(0, lag)`` in ``data2``. Non-overlapping or silent
    input gives -1.0.
    """
    return CrossCorrelator(data1, data2, window).at(lag)


@dataclass(frozen=True)
class SearchPhase:
    """Outcome of one search pass.

    Attributes:
        name: "coarse", "refine" or "ultra_fine".
        offset_samples: Best lag after this pass.
        correlation: Correlation at that lag.
        evaluated: Number of lags evaluated in this pass.
    """
    name: str
    offset_samples: int
    correlation: float
    evaluated: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "offset_samples": self.offset_samples,
            "correlation": self.correlation,
            "evaluated": self.evaluated,
        }


@dataclass(frozen=True)
class AudioAnalysisResult:
    """Estimated offset between two sources.

    Attributes:
        offset_seconds: Secondary time minus primary time for the same event.
        confidence: ``(correlation_peak + 1) / 2`` clamped to [0, 1].
        correlation_peak: Best Pearson correlation found, in [-1, 1].
        sample_rate: Rate the search ran at.
        phases: Per-pass record, in search order.
    """
    offset_seconds: float
    confidence: float
    correlation_peak: float
    sample_rate: int = 0
    phases: Tuple[SearchPhase, ...] = field(default_factory=tuple)

    @property
    def offset_samples(self) -> int:
        return int(round(self.offset_seconds * self.sample_rate))

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary."""
        return {
            "offset_seconds": self.offset_seconds,
            "confidence": self.confidence,
            "correlation_peak": self.correlation_peak,
            "sample_rate": self.sample_rate,
            "phases": [phase.to_dict() for phase in self.phases],
        }


def confidence_from_correlation(correlation: float) -> float:
    """Map a correlation in [-1, 1] onto a confidence in [0, 1]."""
    if not math.isfinite(correlation):
        return 0.0
    return max(0.0, min(1.0, (correlation + 1.0) / 2.0))


class OffsetEstimator:
    """Multi-resolution cross-correlation offset search.

    Example:
        >>> estimator = OffsetEstimator(SyncConfig(max_offset_seconds=10))
        >>> result = estimator.estimate(waveform_a, waveform_b)
        >>> print(f"{result.offset_seconds:+.3f}s ({result.confidence:.0%})")
    """

    # Overall progress spans per pass
    COARSE_SPAN = (40.0, 50.0)
    REFINE_SPAN = (50.0, 80.0)
    ULTRA_FINE_SPAN = (80.0, 100.0)

    def __init__(self, config: Optional[SyncConfig] = None) -> None:
        self.config = config or SyncConfig()

    def estimate(
        self,
        waveform_a: WaveformData,
        waveform_b: WaveformData,
        progress: Optional[ProgressCallback] = None,
    ) -> AudioAnalysisResult:
        """Estimate the offset of ``waveform_b`` relative to ``waveform_a``.

        Args:
            waveform_a: Primary stream audio.
            waveform_b: Secondary stream audio.
            progress: Optional ``(stage, percent)`` callback; percent rises
                monotonically from 40 to 100.

        Returns:
            AudioAnalysisResult. Silent or non-overlapping input yields a
            zero offset with zero confidence instead of an error.

        Raises:
            ValueError: If the waveforms use different sample rates.
        """
        if waveform_a.sample_rate != waveform_b.sample_rate:
            raise ValueError(
                "Waveforms must share a sample rate "
                f"({waveform_a.sample_rate} != {waveform_b.sample_rate})"
            )

        rate = waveform_a.sample_rate
        config = self.config
        report = progress or (lambda stage, percent: None)

        window = max(1, int(config.analysis_length_seconds * rate))
        max_offset = int(config.max_offset_seconds * rate)
        coarse_step = max(1, int(config.coarse_step_seconds * rate))
        fine_step = max(1, int(config.fine_step_seconds * rate))
        fine_range = int(config.fine_range_seconds * rate)
        ultra_range = int(config.ultra_fine_range_seconds * rate)

        logger.info(
            f"Cross-correlation: +/-{config.max_offset_seconds}s, "
            f"window {config.analysis_length_seconds}s @ {rate} Hz"
        )

        # No lag reaches past this many samples into either buffer
        reach = window + max_offset + fine_range + ultra_range
        correlator = CrossCorrelator(
            waveform_a.samples[:reach], waveform_b.samples[:reach], window
        )

        # Coarse pass: symmetric grid k * step, |k * step| <= max_offset
        k_max = max_offset // coarse_step
        coarse_lags = [k * coarse_step for k in range(-k_max, k_max + 1)]
        coarse = self._search(
            "coarse", correlator, coarse_lags, None, -math.inf, report, self.COARSE_SPAN
        )

        if coarse.correlation <= -1.0:
            logger.warning(
                "No usable correlation between sources (silent or too short); "
                "returning zero offset"
            )
            report("Analysis complete", 100.0)
            return AudioAnalysisResult(
                offset_seconds=0.0,
                confidence=0.0,
                correlation_peak=-1.0,
                sample_rate=rate,
                phases=(SearchPhase("coarse", 0, -1.0, coarse.evaluated),),
            )

        refine = self._search(
            "refine",
            correlator,
            _around(coarse.offset_samples, fine_range, fine_step),
            coarse.offset_samples,
            coarse.correlation,
            report,
            self.REFINE_SPAN,
        )
        ultra = self._search(
            "ultra_fine",
            correlator,
            _around(refine.offset_samples, ultra_range, 1),
            refine.offset_samples,
            refine.correlation,
            report,
            self.ULTRA_FINE_SPAN,
        )

        offset_seconds = ultra.offset_samples / float(rate)
        confidence = confidence_from_correlation(ultra.correlation)

        logger.info(
            f"Best offset: {offset_seconds:+.4f}s "
            f"({ultra.offset_samples} samples, correlation {ultra.correlation:.4f}, "
            f"improvement {ultra.correlation - coarse.correlation:.4f})"
        )

        return AudioAnalysisResult(
            offset_seconds=offset_seconds,
            confidence=confidence,
            correlation_peak=ultra.correlation,
            sample_rate=rate,
            phases=(coarse, refine, ultra),
        )

    def _search(
        self,
        name: str,
        correlator: CrossCorrelator,
        lags: Iterable[int],
        best_lag: Optional[int],
        best_correlation: float,
        report: ProgressCallback,
        span: Tuple[float, float],
    ) -> SearchPhase:
        """Scan ``lags`` in order, keeping the first strictly-better lag."""
        lags = list(lags)
        start, end = span
        stage = _STAGE_LABELS[name]
        report(stage, start)

        for index, lag in enumerate(lags, 1):
            correlation = correlator.at(lag)
            if best_lag is None or correlation > best_correlation:
                best_correlation = correlation
                best_lag = lag
            if index % PROGRESS_INTERVAL == 0:
                report(stage, start + (end - start) * index / len(lags))

        report(stage, end)
        logger.debug(
            f"{name} pass: offset {best_lag} samples, "
            f"correlation {best_correlation:.4f}, {len(lags)} lags"
        )
        return SearchPhase(name, int(best_lag or 0), float(best_correlation), len(lags))


_STAGE_LABELS = {
    "coarse": "Coarse search",
    "refine": "Refining offset",
    "ultra_fine": "Sample-level search",
}


def _around(center: int, radius: int, step: int) -> range:
    """Lags ``center + k * step`` for ``|k * step| <= radius``."""
    k_max = radius // step
    return range(center - k_max * step, center + k_max * step + 1, step)


__all__ = [
    "VARIANCE_FLOOR",
    "CrossCorrelator",
    "correlate",
    "SearchPhase",
    "AudioAnalysisResult",
    "confidence_from_correlation",
    "OffsetEstimator",
]
