"""Audio waveform extraction for AngleSync.

Decodes the audio track of a media file into a mono float32 sample buffer
and a coarse peak envelope. Decoding goes through an ``AudioDecoder``; the
default implementation pipes raw PCM out of FFmpeg, so any container FFmpeg
can read is supported.

Each extraction opens its own ``DecodeContext`` and releases it on every
exit path, so no decoder state outlives a call.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from ..config import SyncConfig
from ..errors import AudioDecodeError, create_error_context
from ..utils.ffmpeg import build_pcm_command, find_audio_stream, probe_media

logger = logging.getLogger(__name__)

DEFAULT_PEAK_COUNT = 1000

# Bytes per f32le sample
_SAMPLE_WIDTH = 4


def generate_peaks(samples: np.ndarray, count: int = DEFAULT_PEAK_COUNT) -> np.ndarray:
    """Downsample ``samples`` into ``count`` peak values.

    The buffer is split into ``count`` blocks of ``len(samples) // count``
    samples; each peak is the largest absolute sample of its block. Trailing
    samples that do not fill a block are ignored, and a buffer shorter than
    ``count`` yields all-zero peaks.

    Args:
        samples: Mono sample buffer.
        count: Number of peaks to produce.

    Returns:
        float32 array of length ``count``.
    """
    if count < 1:
        raise ValueError("count must be at least 1")

    samples = np.asarray(samples, dtype=np.float32)
    block_size = len(samples) // count
    if block_size == 0:
        return np.zeros(count, dtype=np.float32)

    blocks = np.abs(samples[: block_size * count]).reshape(count, block_size)
    return blocks.max(axis=1).astype(np.float32)


@dataclass(frozen=True, eq=False)
class WaveformData:
    """Decoded audio of one source.

    Attributes:
        samples: Mono float32 samples in [-1, 1] (read-only).
        sample_rate: Samples per second.
        duration_seconds: Length of the decoded audio.
        peaks: Peak envelope (read-only), see ``generate_peaks``.
        source: Where the audio came from, for diagnostics.
    """
    samples: np.ndarray
    sample_rate: int
    duration_seconds: float
    peaks: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    source: Optional[str] = None

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")

        samples = np.array(self.samples, dtype=np.float32)
        samples.setflags(write=False)
        peaks = np.array(self.peaks, dtype=np.float32)
        peaks.setflags(write=False)

        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "peaks", peaks)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))
        object.__setattr__(self, "duration_seconds", float(self.duration_seconds))

    @classmethod
    def from_samples(
        cls,
        samples: np.ndarray,
        sample_rate: int,
        peak_count: int = DEFAULT_PEAK_COUNT,
        source: Optional[str] = None,
    ) -> "WaveformData":
        """Build waveform data from a raw buffer, deriving duration and peaks."""
        samples = np.asarray(samples, dtype=np.float32)
        return cls(
            samples=samples,
            sample_rate=sample_rate,
            duration_seconds=len(samples) / float(sample_rate),
            peaks=generate_peaks(samples, peak_count),
            source=source,
        )

    @property
    def num_samples(self) -> int:
        return int(self.samples.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        """Summary of the waveform (without the sample buffer)."""
        return {
            "source": self.source,
            "sample_rate": self.sample_rate,
            "duration_seconds": self.duration_seconds,
            "num_samples": self.num_samples,
            "peak_count": int(self.peaks.shape[0]),
        }


# =============================================================================
# Decoders
# =============================================================================


class DecodeContext(ABC):
    """One decoding session for one source. Use as a context manager."""

    @abstractmethod
    def read_samples(self) -> np.ndarray:
        """Decode the whole source to a mono float32 buffer.

        Raises:
            AudioDecodeError: If decoding fails.
        """

    def close(self) -> None:
        """Release decoder resources. Safe to call more than once."""

    def __enter__(self) -> "DecodeContext":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class AudioDecoder(ABC):
    """Factory for per-source decode contexts."""

    sample_rate: int

    @abstractmethod
    def open(self, source: Union[str, Path]) -> DecodeContext:
        """Prepare decoding of ``source``.

        Raises:
            AudioDecodeError: If the source is missing or has no audio track.
        """


class FFmpegDecodeContext(DecodeContext):
    """Runs one ffmpeg process that writes f32le PCM to a pipe."""

    def __init__(self, command, source: str, timeout: float) -> None:
        self.command = list(command)
        self.source = source
        self.timeout = timeout
        self._process: Optional[subprocess.Popen] = None

    def __enter__(self) -> "FFmpegDecodeContext":
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise AudioDecodeError(
                f"Failed to start ffmpeg for {self.source}: {e}",
                create_error_context("extraction", "decode", source=self.source, command=self.command),
            ) from e
        return self

    def read_samples(self) -> np.ndarray:
        if self._process is None:
            raise RuntimeError("Decode context is not open")

        try:
            stdout, stderr = self._process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise AudioDecodeError(
                f"Audio extraction timed out after {self.timeout:.0f}s: {self.source}",
                create_error_context("extraction", "decode", source=self.source, command=self.command),
            ) from e

        if self._process.returncode != 0:
            raise AudioDecodeError(
                f"Audio extraction failed: {self.source}",
                create_error_context(
                    "extraction", "decode",
                    source=self.source,
                    command=self.command,
                    stderr=stderr,
                    return_code=self._process.returncode,
                ),
            )

        usable = len(stdout) - len(stdout) % _SAMPLE_WIDTH
        return np.frombuffer(stdout[:usable], dtype=np.float32)

    def close(self) -> None:
        process, self._process = self._process, None
        if process is None:
            return
        if process.poll() is None:
            process.kill()
            process.wait()
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()


class FFmpegAudioDecoder(AudioDecoder):
    """Decodes the first audio stream of a container with FFmpeg.

    Args:
        sample_rate: Output sample rate in Hz (mono).
        timeout: Seconds allowed for decoding one source.
        max_seconds: Decode only this much audio from the start (None = all).
    """

    def __init__(
        self,
        sample_rate: int = 8000,
        timeout: float = 300.0,
        max_seconds: Optional[float] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.timeout = timeout
        self.max_seconds = max_seconds

    def open(self, source: Union[str, Path]) -> FFmpegDecodeContext:
        path = Path(source)
        if not path.is_file():
            raise AudioDecodeError(
                f"Media file not found: {path}",
                create_error_context("extraction", "open", source=path),
            )

        info = probe_media(path)
        if find_audio_stream(info) is None:
            raise AudioDecodeError(
                f"No audio stream in {path}",
                create_error_context("extraction", "probe", source=path),
            )

        command = build_pcm_command(path, self.sample_rate, self.max_seconds)
        return FFmpegDecodeContext(command, str(path), self.timeout)


# =============================================================================
# Extractor
# =============================================================================


class WaveformExtractor:
    """Extracts ``WaveformData`` from media sources.

    Example:
        >>> extractor = WaveformExtractor(SyncConfig(analysis_sample_rate=8000))
        >>> extractor.extract("angle1.mp4").duration_seconds   # capped at the search span
        53.2
        >>> full = WaveformExtractor(SyncConfig(decode_full_track=True))
        >>> full.extract("angle1.mp4").duration_seconds
        5412.3
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        decoder: Optional[AudioDecoder] = None,
    ) -> None:
        self.config = config or SyncConfig()
        self.decoder = decoder or FFmpegAudioDecoder(
            sample_rate=self.config.analysis_sample_rate,
            max_seconds=self.config.decode_limit_seconds,
            timeout=self.config.ffmpeg_timeout,
        )

    def extract(self, source: Union[str, Path]) -> WaveformData:
        """Decode ``source`` into mono samples plus a peak envelope.

        Raises:
            AudioDecodeError: If the source is missing, unreadable, has no
                audio stream, or yields no samples.
        """
        logger.info(f"Extracting audio from: {source}")

        with self.decoder.open(source) as context:
            samples = context.read_samples()

        if samples.size == 0:
            raise AudioDecodeError(
                f"No audio samples decoded from {source}",
                create_error_context("extraction", "decode", source=source),
            )

        if not np.all(np.isfinite(samples)):
            logger.warning(f"Non-finite samples in {source}, replacing with silence")
            samples = np.nan_to_num(samples, nan=0.0, posinf=0.0, neginf=0.0)
        samples = np.clip(samples, -1.0, 1.0)

        waveform = WaveformData.from_samples(
            samples,
            self.decoder.sample_rate,
            peak_count=self.config.peak_count,
            source=str(source),
        )
        logger.debug(
            f"Decoded {waveform.num_samples} samples "
            f"({waveform.duration_seconds:.2f}s @ {waveform.sample_rate} Hz) from {source}"
        )
        return waveform


__all__ = [
    "DEFAULT_PEAK_COUNT",
    "generate_peaks",
    "WaveformData",
    "DecodeContext",
    "AudioDecoder",
    "FFmpegDecodeContext",
    "FFmpegAudioDecoder",
    "WaveformExtractor",
]
