"""Tests for the FFmpeg helper functions."""
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from anglesync.errors import AudioDecodeError, DependencyError
from anglesync.utils.ffmpeg import (
    build_pcm_command,
    check_ffmpeg_installed,
    find_audio_stream,
    get_ffmpeg_path,
    get_media_duration,
    probe_media,
)


@pytest.fixture
def tools_on_path(monkeypatch):
    monkeypatch.delenv("ANGLESYNC_FFMPEG", raising=False)
    monkeypatch.delenv("ANGLESYNC_FFPROBE", raising=False)
    with patch("anglesync.utils.ffmpeg.shutil.which", side_effect=lambda name: f"/usr/bin/{name}"):
        yield


class TestToolLookup:
    """Tests for locating ffmpeg and ffprobe."""

    def test_found_on_path(self, tools_on_path):
        assert get_ffmpeg_path() == "/usr/bin/ffmpeg"
        assert check_ffmpeg_installed() is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("ANGLESYNC_FFMPEG", "/opt/ffmpeg/bin/ffmpeg")
        assert get_ffmpeg_path() == "/opt/ffmpeg/bin/ffmpeg"

    def test_missing(self, monkeypatch):
        monkeypatch.delenv("ANGLESYNC_FFMPEG", raising=False)
        with patch("anglesync.utils.ffmpeg.shutil.which", return_value=None):
            with pytest.raises(DependencyError, match="ffmpeg not found"):
                get_ffmpeg_path()


class TestBuildPcmCommand:
    """Tests for the decode command line."""

    def test_limited_duration(self, tools_on_path):
        cmd = build_pcm_command("a.mp4", 8000, max_seconds=20)

        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[cmd.index("-i") + 1] == "a.mp4"
        assert cmd[cmd.index("-t") + 1] == "20.000"
        assert cmd[cmd.index("-ar") + 1] == "8000"
        assert cmd[cmd.index("-ac") + 1] == "1"
        assert cmd[-1] == "pipe:1"

    def test_full_duration(self, tools_on_path):
        assert "-t" not in build_pcm_command("a.mp4", 8000)


class TestProbeMedia:
    """Tests for ffprobe parsing."""

    def test_parses_output(self, tools_on_path):
        result = MagicMock(stdout='{"format": {"duration": "61.5"}, "streams": [{"codec_type": "audio"}]}')
        with patch("anglesync.utils.ffmpeg.subprocess.run", return_value=result):
            info = probe_media("a.mp4")

        assert get_media_duration(info) == 61.5
        assert find_audio_stream(info) == {"codec_type": "audio"}

    def test_failure(self, tools_on_path):
        error = subprocess.CalledProcessError(1, ["ffprobe"], stderr="No such file")
        with patch("anglesync.utils.ffmpeg.subprocess.run", side_effect=error):
            with pytest.raises(AudioDecodeError) as exc_info:
                probe_media("missing.mp4")

        assert exc_info.value.context.stderr == "No such file"
        assert exc_info.value.context.return_code == 1

    def test_timeout(self, tools_on_path):
        error = subprocess.TimeoutExpired(["ffprobe"], 60)
        with patch("anglesync.utils.ffmpeg.subprocess.run", side_effect=error):
            with pytest.raises(AudioDecodeError, match="Timed out"):
                probe_media("slow.mp4")

    def test_invalid_json(self, tools_on_path):
        with patch("anglesync.utils.ffmpeg.subprocess.run", return_value=MagicMock(stdout="not json")):
            with pytest.raises(AudioDecodeError):
                probe_media("a.mp4")


class TestProbeHelpers:
    """Tests for reading probe results."""

    def test_no_audio_stream(self):
        assert find_audio_stream({"streams": [{"codec_type": "video"}]}) is None
        assert find_audio_stream({}) is None

    def test_duration_missing_or_invalid(self):
        assert get_media_duration({}) is None
        assert get_media_duration({"format": {"duration": "N/A"}}) is None
