"""Tests for the SyncConfig dataclass validation."""
import pytest

from anglesync.config import SyncConfig
from anglesync.errors import ConfigurationError


class TestConfigCreation:
    """Test SyncConfig creation with defaults."""

    def test_defaults(self):
        """Test the documented default tunables."""
        config = SyncConfig()

        assert config.analysis_sample_rate == 8000
        assert config.max_offset_seconds == 30.0
        assert config.analysis_length_seconds == 20.0
        assert config.coarse_step_seconds == 0.02
        assert config.fine_range_seconds == 2.0
        assert config.fine_step_seconds == pytest.approx(1 / 30)
        assert config.ultra_fine_range_seconds == 0.2
        assert config.peak_count == 1000

    def test_playback_defaults(self):
        """Test the playback coordination defaults."""
        config = SyncConfig()

        assert config.preroll_epsilon == 0.05
        assert config.frame_drift_threshold == 0.01
        assert config.poll_drift_threshold == 0.1
        assert config.post_seek_drift_threshold == 0.05
        assert config.poll_interval == 0.2
        assert config.quiet_window == 0.5
        assert config.seek_debounce == 0.05
        assert config.resume_delay == 0.3
        assert config.max_unknown_duration == 7200.0

    def test_seconds_to_samples(self):
        """Test conversion floors to whole samples."""
        config = SyncConfig(analysis_sample_rate=8000)
        assert config.seconds_to_samples(20.0) == 160000
        assert config.seconds_to_samples(0.02) == 160
        assert config.seconds_to_samples(0.00001) == 0

    def test_integral_float_sample_rate(self):
        """Test an integral float rate is normalised to int."""
        config = SyncConfig(analysis_sample_rate=16000.0)
        assert config.analysis_sample_rate == 16000
        assert isinstance(config.analysis_sample_rate, int)


class TestConfigValidation:
    """Test SyncConfig rejects unusable values."""

    @pytest.mark.parametrize("rate", [0, -8000, 8000.5])
    def test_invalid_sample_rate(self, rate):
        with pytest.raises(ConfigurationError):
            SyncConfig(analysis_sample_rate=rate)

    @pytest.mark.parametrize("name", [
        "max_offset_seconds",
        "analysis_length_seconds",
        "coarse_step_seconds",
        "fine_step_seconds",
        "poll_interval",
    ])
    def test_positive_fields(self, name):
        with pytest.raises(ConfigurationError, match=name):
            SyncConfig(**{name: 0})

    @pytest.mark.parametrize("name", ["quiet_window", "resume_delay", "frame_drift_threshold"])
    def test_non_negative_fields(self, name):
        with pytest.raises(ConfigurationError, match=name):
            SyncConfig(**{name: -0.1})

    def test_zero_windows_allowed(self):
        config = SyncConfig(quiet_window=0, seek_debounce=0, resume_delay=0)
        assert config.quiet_window == 0

    def test_peak_count(self):
        with pytest.raises(ConfigurationError):
            SyncConfig(peak_count=0)

    def test_coarse_step_larger_than_range(self):
        with pytest.raises(ConfigurationError):
            SyncConfig(max_offset_seconds=0.01, coarse_step_seconds=0.02)


class TestDecodeSpan:
    """Test how much audio analysis decodes."""

    def test_span_covers_search_reach(self):
        config = SyncConfig()
        assert config.analysis_span_seconds == pytest.approx(30.0 + 2.0 + 0.2 + 20.0 + 1.0)
        assert config.decode_limit_seconds == config.analysis_span_seconds

    def test_span_follows_tunables(self):
        config = SyncConfig(max_offset_seconds=10.0, analysis_length_seconds=5.0)
        assert config.analysis_span_seconds == pytest.approx(10.0 + 2.0 + 0.2 + 5.0 + 1.0)

    def test_full_track(self):
        assert SyncConfig(decode_full_track=True).decode_limit_seconds is None


class TestConfigSerialization:
    """Test dictionary conversion."""

    def test_round_trip(self):
        config = SyncConfig(max_offset_seconds=10.0, quiet_window=0.25)
        assert SyncConfig.from_dict(config.to_dict()) == config

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigurationError, match="max_offset"):
            SyncConfig.from_dict({"max_offset": 5})
