"""Shared pytest fixtures for AngleSync tests."""
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional

import numpy as np
import pytest

from anglesync.audio.waveform import WaveformData
from anglesync.config import SyncConfig
from anglesync.errors import PlayerUnavailableError
from anglesync.playback.guard import SeekGuard
from anglesync.playback.player import PlayerEvent, PlayerHandle, PlayerStatus
from anglesync.playback.scheduler import VirtualScheduler
from anglesync.sync.store import MemorySyncStore


# ============================================================================
# Synthetic audio
# ============================================================================

# Incommensurate tone frequencies (Hz); no common period within any search range
SCENE_FREQUENCIES = (0.37, 1.13, 2.71, 4.49, 6.83)


def make_scene(duration: float, sample_rate: int, seed: int = 0) -> np.ndarray:
    """Audio of one recorded scene: tones plus smoothed random texture.

    The texture decorrelates within ~50 ms, so the autocorrelation has a
    single dominant peak at zero lag.
    """
    rng = np.random.default_rng(seed)
    n = int(duration * sample_rate)
    t = np.arange(n) / float(sample_rate)

    phases = rng.uniform(0.0, 2.0 * np.pi, len(SCENE_FREQUENCIES))
    tone = sum(np.sin(2.0 * np.pi * f * t + p) for f, p in zip(SCENE_FREQUENCIES, phases))
    tone = tone / tone.std()

    smoothing = max(1, int(0.05 * sample_rate))
    texture = np.convolve(rng.standard_normal(n), np.ones(smoothing) / smoothing, mode="same")
    texture = texture / texture.std()

    scene = tone + texture
    return 0.8 * scene / np.abs(scene).max()


def add_noise(signal: np.ndarray, snr_db: float, seed: int) -> np.ndarray:
    """Add independent white noise at ``snr_db``."""
    rng = np.random.default_rng(seed)
    noise_power = signal.var() / (10.0 ** (snr_db / 10.0))
    return signal + rng.standard_normal(len(signal)) * np.sqrt(noise_power)


def make_angle_pair(
    offset: float,
    duration: float = 40.0,
    sample_rate: int = 1000,
    margin: float = 5.0,
    snr_db: Optional[float] = 20.0,
    seed: int = 0,
):
    """Two recordings of one scene where ``a[t] == b[t + offset]``.

    The expected estimate of ``offset(b relative to a)`` is ``offset``.
    """
    scene = make_scene(duration + 2 * margin, sample_rate, seed)
    length = int(duration * sample_rate)
    base = int(margin * sample_rate)
    shift = int(round(offset * sample_rate))

    b = scene[base:base + length]
    a = scene[base + shift:base + shift + length]
    if snr_db is not None:
        a = add_noise(a, snr_db, seed + 1)
        b = add_noise(b, snr_db, seed + 2)

    return (
        WaveformData.from_samples(a, sample_rate, source="angle_a"),
        WaveformData.from_samples(b, sample_rate, source="angle_b"),
    )


@pytest.fixture
def analysis_config() -> SyncConfig:
    """Analysis settings scaled down for 1 kHz synthetic audio."""
    return SyncConfig(
        analysis_sample_rate=1000,
        max_offset_seconds=5.0,
        analysis_length_seconds=10.0,
        peak_count=100,
    )


@pytest.fixture
def angle_pair() -> Callable[..., tuple]:
    """Factory for synthetic angle pairs (see ``make_angle_pair``)."""
    return make_angle_pair


# ============================================================================
# Players and scheduling
# ============================================================================


class FakePlayer(PlayerHandle):
    """In-memory player handle.

    Time only moves when a test sets ``time`` or calls ``advance``.
    """

    def __init__(
        self,
        duration: Optional[float] = 120.0,
        time: float = 0.0,
        status: PlayerStatus = PlayerStatus.READY,
    ) -> None:
        self.time = time
        self._duration = duration
        self._status = status
        self.paused = True
        self.rate = 1.0
        self.seeks: List[float] = []
        self.handlers: Dict[str, List[Callable]] = defaultdict(list)

    def status(self) -> PlayerStatus:
        return self._status

    def _check(self) -> None:
        if self._status is PlayerStatus.DISPOSED:
            raise PlayerUnavailableError("player disposed")

    def get_current_time(self) -> Optional[float]:
        self._check()
        return self.time

    def set_current_time(self, seconds: float) -> None:
        self._check()
        self.seeks.append(seconds)
        self.time = seconds

    def duration(self) -> Optional[float]:
        self._check()
        return self._duration

    def play(self) -> None:
        self._check()
        self.paused = False

    def pause(self) -> None:
        self._check()
        self.paused = True

    def is_paused(self) -> bool:
        return self.paused

    def on(self, event: str, handler: Callable) -> None:
        self.handlers[event].append(handler)

    def off(self, event: str, handler: Callable) -> None:
        if handler in self.handlers[event]:
            self.handlers[event].remove(handler)

    def set_playback_rate(self, rate: float) -> None:
        self.rate = rate

    # Test helpers

    def emit(self, event: str, *args) -> None:
        for handler in list(self.handlers[event]):
            handler(*args)

    def advance(self, seconds: float) -> None:
        if not self.paused:
            self.time += seconds * self.rate

    def dispose(self) -> None:
        self._status = PlayerStatus.DISPOSED

    def mark_ready(self) -> None:
        self._status = PlayerStatus.READY
        self.emit(PlayerEvent.READY.value)


@pytest.fixture
def players() -> List[FakePlayer]:
    """Primary and one secondary, both ready, 120 s long."""
    return [FakePlayer(), FakePlayer()]


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def guard(scheduler) -> SeekGuard:
    return SeekGuard(scheduler, quiet_window=0.5)


@pytest.fixture
def memory_store() -> MemorySyncStore:
    return MemorySyncStore()


# ============================================================================
# Logging isolation
# ============================================================================


@pytest.fixture(autouse=True)
def reset_package_logging():
    """Undo handler and propagation changes made by configure_logging."""
    yield
    package_logger = logging.getLogger("anglesync")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
