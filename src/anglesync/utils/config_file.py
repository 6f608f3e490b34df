"""Configuration file management for AngleSync.

Supports loading configuration from:
1. User config: ~/.anglesync/config.yaml
2. Project config: .anglesync.yaml (in current directory)
3. CLI arguments (highest precedence)

Config files are merged with CLI taking precedence over project over user.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..config import SyncConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


# Configuration schema; defaults mirror SyncConfig
CONFIG_SCHEMA: Dict[str, Dict[str, Dict[str, Any]]] = {
    "sync": {
        "analysis_sample_rate": {"type": int, "range": (1000, 96000), "default": 8000},
        "max_offset_seconds": {"type": float, "range": (0.1, 3600), "default": 30.0},
        "analysis_length_seconds": {"type": float, "range": (1, 3600), "default": 20.0},
        "coarse_step_seconds": {"type": float, "range": (0.001, 1), "default": 0.02},
        "fine_range_seconds": {"type": float, "range": (0, 30), "default": 2.0},
        "fine_step_seconds": {"type": float, "range": (0.0001, 1), "default": 1.0 / 30.0},
        "ultra_fine_range_seconds": {"type": float, "range": (0, 5), "default": 0.2},
        "peak_count": {"type": int, "range": (1, 100000), "default": 1000},
        "ffmpeg_timeout": {"type": float, "range": (1, 86400), "default": 300.0},
        "decode_full_track": {"type": bool, "default": False},
        "preroll_epsilon": {"type": float, "range": (0, 1), "default": 0.05},
        "frame_drift_threshold": {"type": float, "range": (0, 10), "default": 0.01},
        "poll_drift_threshold": {"type": float, "range": (0, 10), "default": 0.1},
        "post_seek_drift_threshold": {"type": float, "range": (0, 10), "default": 0.05},
        "post_seek_window": {"type": float, "range": (0, 10), "default": 0.1},
        "poll_interval": {"type": float, "range": (0.01, 10), "default": 0.2},
        "quiet_window": {"type": float, "range": (0, 10), "default": 0.5},
        "seek_debounce": {"type": float, "range": (0, 5), "default": 0.05},
        "resume_delay": {"type": float, "range": (0, 10), "default": 0.3},
        "frame_rate": {"type": float, "range": (1, 240), "default": 60.0},
        "max_unknown_duration": {"type": float, "range": (1, 86400 * 7), "default": 7200.0},
    },
    "logging": {
        "log_level": {"type": str, "choices": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], "default": "WARNING"},
        "log_format": {"type": str, "choices": ["text", "json"], "default": "text"},
        "log_file": {"type": str, "default": None},
        "component_levels": {"type": dict, "default": {}},
    },
}

# Default config file template
DEFAULT_CONFIG_TEMPLATE = """\
# AngleSync Configuration File
# Location: ~/.anglesync/config.yaml or .anglesync.yaml (project-local)
#
# CLI arguments take precedence over config file values.
# Project-local config (.anglesync.yaml) overrides user config (~/.anglesync/config.yaml).

# Audio analysis and playback synchronization
sync:
  # Sample rate (Hz) audio is decoded at for analysis
  analysis_sample_rate: 8000

  # Largest offset (seconds, +/-) the search considers
  max_offset_seconds: 30

  # Leading audio window (seconds) used for correlation
  analysis_length_seconds: 20

  # Decode whole tracks instead of only the span the offset search reads
  # (waveform durations then cover the full source)
  # decode_full_track: false

  # Drift correction thresholds (seconds)
  # frame_drift_threshold: 0.01
  # poll_drift_threshold: 0.1
  # post_seek_drift_threshold: 0.05

  # Seek behaviour (seconds)
  # quiet_window: 0.5
  # seek_debounce: 0.05
  # resume_delay: 0.3

logging:
  log_level: WARNING
  log_format: text
  # log_file: ~/.anglesync/anglesync.log
  # component_levels:
  #   playback.clock: DEBUG
"""


@dataclass
class ValidationError:
    """Represents a config validation error."""
    path: str
    message: str
    value: Any = None

    def __str__(self) -> str:
        if self.value is None:
            return f"{self.path}: {self.message}"
        return f"{self.path}: {self.message} (got {self.value!r})"


@dataclass
class ConfigFileManager:
    """Manages configuration file loading, saving, and merging.

    Attributes:
        user_config_path: Path to user-level config file
        project_config_path: Path to project-local config file
        loaded_config: The merged configuration dictionary
    """

    user_config_path: Path = field(default_factory=lambda: Path.home() / ".anglesync" / "config.yaml")
    project_config_path: Path = field(default_factory=lambda: Path.cwd() / ".anglesync.yaml")
    loaded_config: Dict[str, Any] = field(default_factory=dict)
    _validation_errors: List[ValidationError] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Ensure paths are Path objects."""
        self.user_config_path = Path(self.user_config_path).expanduser()
        self.project_config_path = Path(self.project_config_path).expanduser()

    def load(self, extra_path: Optional[Path] = None) -> Dict[str, Any]:
        """Load and merge configuration from all sources.

        Order of precedence (later overrides earlier):
        1. Built-in defaults
        2. User config (~/.anglesync/config.yaml)
        3. Project config (.anglesync.yaml)
        4. ``extra_path`` (an explicit ``--config`` file)

        Returns:
            Merged configuration dictionary
        """
        self._validation_errors = []

        config: Dict[str, Any] = self._get_builtin_defaults()

        sources = [self.user_config_path, self.project_config_path]
        if extra_path is not None:
            extra_path = Path(extra_path).expanduser()
            if not extra_path.exists():
                self._validation_errors.append(
                    ValidationError(path=str(extra_path), message="Config file not found")
                )
            sources.append(extra_path)

        for path in sources:
            if path.exists():
                file_config = self._load_yaml_file(path)
                if file_config:
                    logger.debug("Merging config file %s", path)
                    config = self._deep_merge(config, file_config)

        self._validate_config(config)

        self.loaded_config = config
        return config

    def _get_builtin_defaults(self) -> Dict[str, Any]:
        """Get built-in default configuration."""
        defaults: Dict[str, Any] = {}
        for section, keys in CONFIG_SCHEMA.items():
            defaults[section] = {}
            for key, schema in keys.items():
                value = schema["default"]
                defaults[section][key] = dict(value) if isinstance(value, dict) else value
        return defaults

    def _load_yaml_file(self, path: Path) -> Optional[Dict[str, Any]]:
        """Load a YAML configuration file.

        Args:
            path: Path to the YAML file

        Returns:
            Parsed configuration dictionary, or None if loading fails
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            self._validation_errors.append(
                ValidationError(path=str(path), message=f"YAML parsing error: {e}")
            )
            return None
        except OSError as e:
            self._validation_errors.append(
                ValidationError(path=str(path), message=f"Failed to read file: {e}")
            )
            return None

        if not isinstance(data, dict):
            self._validation_errors.append(
                ValidationError(path=str(path), message="Top level must be a mapping")
            )
            return None
        return data

    def _deep_merge(self, base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, overlay takes precedence."""
        result = base.copy()

        for key, value in overlay.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration against schema."""
        for section, keys in CONFIG_SCHEMA.items():
            values = config.get(section, {})
            if not isinstance(values, dict):
                self._validation_errors.append(
                    ValidationError(path=section, message="Section must be a mapping", value=values)
                )
                continue

            for key in values:
                if key not in keys:
                    self._validation_errors.append(
                        ValidationError(path=f"{section}.{key}", message="Unknown key")
                    )

            for key, schema in keys.items():
                value = values.get(key)
                if value is None:
                    continue
                path = f"{section}.{key}"

                expected_type = schema.get("type")
                if expected_type and not isinstance(value, expected_type):
                    # Allow int for float fields
                    if not (expected_type is float and isinstance(value, int) and not isinstance(value, bool)):
                        self._validation_errors.append(
                            ValidationError(
                                path=path,
                                message=f"Expected {expected_type.__name__}, got {type(value).__name__}",
                                value=value,
                            )
                        )
                        continue

                choices = schema.get("choices")
                if choices and value not in choices:
                    self._validation_errors.append(
                        ValidationError(
                            path=path,
                            message=f"Invalid value. Must be one of: {choices}",
                            value=value,
                        )
                    )

                value_range = schema.get("range")
                if value_range and isinstance(value, (int, float)):
                    min_val, max_val = value_range
                    if not (min_val <= value <= max_val):
                        self._validation_errors.append(
                            ValidationError(
                                path=path,
                                message=f"Value must be between {min_val} and {max_val}",
                                value=value,
                            )
                        )

    def get_validation_errors(self) -> List[ValidationError]:
        """Get list of validation errors from last load."""
        return self._validation_errors

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get a configuration value by dot-notation path (e.g. "sync.max_offset_seconds")."""
        value: Any = self.loaded_config

        for key in key_path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def sync_config(self, overrides: Optional[Dict[str, Any]] = None) -> SyncConfig:
        """Build a SyncConfig from the loaded ``sync`` section.

        Args:
            overrides: Values taking precedence over the files (None values
                are ignored), typically parsed CLI options

        Raises:
            ConfigurationError: If the last load reported validation errors
                or the merged values are rejected by SyncConfig
        """
        if self._validation_errors:
            details = "; ".join(str(error) for error in self._validation_errors)
            raise ConfigurationError(f"Invalid configuration: {details}")

        values = dict(self.loaded_config.get("sync") or self._get_builtin_defaults()["sync"])
        for key, value in (overrides or {}).items():
            if value is not None:
                values[key] = value
        return SyncConfig.from_dict(values)

    def init_config(self, target: str = "user") -> Path:
        """Initialize a new configuration file with defaults.

        Args:
            target: "user" for ~/.anglesync/config.yaml,
                   "project" for .anglesync.yaml

        Returns:
            Path to created config file
        """
        config_path = self.user_config_path if target == "user" else self.project_config_path
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            f.write(DEFAULT_CONFIG_TEMPLATE)

        return config_path

    def show_config(self) -> str:
        """Get the current configuration as YAML."""
        return yaml.safe_dump(self.loaded_config, default_flow_style=False, sort_keys=False)

    def config_exists(self) -> bool:
        """Check if any configuration file exists."""
        return self.user_config_path.exists() or self.project_config_path.exists()


def get_config_manager(extra_path: Optional[Path] = None) -> ConfigFileManager:
    """Get a ConfigFileManager instance with loaded configuration."""
    manager = ConfigFileManager()
    manager.load(extra_path)
    return manager


__all__ = [
    "CONFIG_SCHEMA",
    "DEFAULT_CONFIG_TEMPLATE",
    "ValidationError",
    "ConfigFileManager",
    "get_config_manager",
]
