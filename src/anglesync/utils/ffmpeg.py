"""
FFmpeg Helper Functions
Utilities for probing media and decoding audio with FFmpeg and ffprobe.
"""

import json
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import AudioDecodeError, DependencyError, create_error_context

# Environment overrides for non-PATH installs
FFMPEG_ENV = "ANGLESYNC_FFMPEG"
FFPROBE_ENV = "ANGLESYNC_FFPROBE"

PROBE_TIMEOUT = 60


def _resolve_tool(name: str, env_var: str) -> str:
    override = os.environ.get(env_var)
    if override:
        return override

    path = shutil.which(name)
    if not path:
        raise DependencyError(
            f"{name} not found. Please install FFmpeg:\n"
            "  Ubuntu/Debian: sudo apt-get install ffmpeg\n"
            "  macOS: brew install ffmpeg\n"
            "  Windows: Download from https://ffmpeg.org/download.html"
        )
    return path


def get_ffmpeg_path() -> str:
    """
    Locate the ffmpeg executable.

    Returns:
        Path to ffmpeg ($ANGLESYNC_FFMPEG takes precedence over PATH)

    Raises:
        DependencyError: If ffmpeg is not installed
    """
    return _resolve_tool("ffmpeg", FFMPEG_ENV)


def get_ffprobe_path() -> str:
    """Locate the ffprobe executable ($ANGLESYNC_FFPROBE overrides PATH)."""
    return _resolve_tool("ffprobe", FFPROBE_ENV)


def check_ffmpeg_installed() -> bool:
    """
    Check if FFmpeg and ffprobe are installed and available.

    Raises:
        DependencyError: If FFmpeg or ffprobe is not found
    """
    get_ffmpeg_path()
    get_ffprobe_path()
    return True


def probe_media(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Get container and stream information using ffprobe.

    Args:
        path: Path to media file

    Returns:
        Parsed ffprobe JSON (``format`` and ``streams``)

    Raises:
        AudioDecodeError: If ffprobe fails or its output is not JSON
    """
    cmd = [
        get_ffprobe_path(),
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]

    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=True, timeout=PROBE_TIMEOUT
        )
    except subprocess.CalledProcessError as e:
        raise AudioDecodeError(
            f"Failed to probe media: {path}",
            create_error_context(
                "extraction", "probe", source=path, command=cmd,
                stderr=e.stderr, return_code=e.returncode,
            ),
        ) from e
    except subprocess.TimeoutExpired as e:
        raise AudioDecodeError(
            f"Timed out probing media: {path}",
            create_error_context("extraction", "probe", source=path, command=cmd),
        ) from e

    try:
        return json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise AudioDecodeError(
            f"Failed to parse ffprobe output for {path}: {e}",
            create_error_context("extraction", "probe", source=path, command=cmd),
        ) from e


def find_audio_stream(info: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the first audio stream description of a probe result, if any."""
    for stream in info.get("streams", []):
        if stream.get("codec_type") == "audio":
            return stream
    return None


def get_media_duration(info: Dict[str, Any]) -> Optional[float]:
    """Container duration in seconds, or None when ffprobe could not tell."""
    duration = info.get("format", {}).get("duration")
    try:
        return float(duration) if duration is not None else None
    except (TypeError, ValueError):
        return None


def build_pcm_command(
    source: Union[str, Path],
    sample_rate: int,
    max_seconds: Optional[float] = None,
) -> List[str]:
    """
    Build the ffmpeg command that writes mono float32 PCM to stdout.

    Args:
        source: Media file to decode
        sample_rate: Output sample rate in Hz
        max_seconds: Only decode this much audio from the start (None = all)
    """
    cmd = [
        get_ffmpeg_path(),
        "-nostdin",
        "-v", "error",
        "-i", str(source),
        "-vn",
        "-map", "0:a:0",
    ]
    if max_seconds is not None:
        cmd.extend(["-t", f"{max_seconds:.3f}"])
    cmd.extend([
        "-f", "f32le",
        "-acodec", "pcm_f32le",
        "-ac", "1",
        "-ar", str(sample_rate),
        "pipe:1",
    ])
    return cmd


__all__ = [
    "get_ffmpeg_path",
    "get_ffprobe_path",
    "check_ffmpeg_installed",
    "probe_media",
    "find_audio_stream",
    "get_media_duration",
    "build_pcm_command",
]
