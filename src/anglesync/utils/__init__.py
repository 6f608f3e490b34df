"""
AngleSync Utilities Package
Logging, configuration files and FFmpeg helpers.
"""

from .ffmpeg import (
    check_ffmpeg_installed,
    get_ffmpeg_path,
    get_ffprobe_path,
    probe_media,
)

from .logging import (
    LogConfig,
    SyncLogger,
    configure_logging,
    get_logger,
    configure_from_cli,
)

from .config_file import (
    ConfigFileManager,
    get_config_manager,
)

__all__ = [
    "check_ffmpeg_installed",
    "get_ffmpeg_path",
    "get_ffprobe_path",
    "probe_media",
    "LogConfig",
    "SyncLogger",
    "configure_logging",
    "get_logger",
    "configure_from_cli",
    "ConfigFileManager",
    "get_config_manager",
]
