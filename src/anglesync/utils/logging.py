"""Structured logging for AngleSync.

Every module logs through ``logging.getLogger(__name__)``, so all records
flow through the ``anglesync`` logger that ``configure_logging`` sets up:

- text output for terminals, JSON lines for log collectors
- per-component levels (``{"playback.clock": "DEBUG"}``)
- optional rotating log file

Keyword fields passed to a ``SyncLogger`` travel on the record as
``extra_fields``; the text formatter appends them in brackets and the JSON
formatter merges them into the object.

Example usage:
    >>> configure_logging(LogConfig(log_level="DEBUG", component_levels={"playback": "INFO"}))
    >>> logger = get_logger("analyzer")
    >>> logger.info("Analysis finished", offset=2.37, confidence=0.91)
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from ..errors import ConfigurationError

ROOT_LOGGER_NAME = "anglesync"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_FORMATS = ("text", "json")

# Keyword arguments the logging module itself understands
_RECORD_KWARGS = ("exc_info", "stack_info", "stacklevel", "extra")


def _level_name(value: Any, where: str) -> str:
    name = str(value).upper()
    if name not in VALID_LEVELS:
        raise ConfigurationError(f"Invalid log level {value!r} for {where}; expected one of {VALID_LEVELS}")
    return name


@dataclass
class LogConfig:
    """Logging setup for the ``anglesync`` logger tree.

    Attributes:
        log_level: Level of the package logger and its handlers
        log_format: 'text' or 'json'
        log_file: Also write to this file, rotated at ``max_file_size_mb``
        component_levels: Levels keyed by the dotted name below
            ``anglesync`` (e.g. ``playback.clock``)
        max_file_size_mb: Rotation size of the log file
        backup_count: Rotated files to keep
        include_timestamp: Prefix text lines with the time
        include_source: Add file and line of the call site
    """

    log_level: LogLevel = "INFO"
    log_format: LogFormat = "text"
    log_file: Optional[str] = None
    component_levels: Dict[str, LogLevel] = field(default_factory=dict)
    max_file_size_mb: int = 10
    backup_count: int = 5
    include_timestamp: bool = True
    include_source: bool = False

    def __post_init__(self) -> None:
        self.log_level = _level_name(self.log_level, "log_level")
        if self.log_format not in VALID_FORMATS:
            raise ConfigurationError(
                f"Invalid log_format {self.log_format!r}; expected one of {VALID_FORMATS}"
            )
        self.component_levels = {
            component: _level_name(level, f"component '{component}'")
            for component, level in self.component_levels.items()
        }


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    ``{"timestamp": "...Z", "level": "INFO", "component": "clock",
    "message": "Drift correction on stream 1", ...extra fields}``
    """

    def __init__(self, include_source: bool = False) -> None:
        super().__init__()
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{created.microsecond // 1000:03d}Z",
            "level": record.levelname,
            "component": record.name.rsplit(".", 1)[-1],
            "message": record.getMessage(),
        }
        if self.include_source:
            entry["source"] = {"file": record.filename, "line": record.lineno, "function": record.funcName}

        entry.update(getattr(record, "extra_fields", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """``2024-12-29 10:30:45 | INFO     | anglesync.analyzer | Analysis complete [offset=2.37]``"""

    def __init__(self, include_timestamp: bool = True, include_source: bool = False) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")
        self.include_timestamp = include_timestamp
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        fields = getattr(record, "extra_fields", None)
        if fields:
            message += " [" + ", ".join(f"{key}={value}" for key, value in fields.items()) + "]"
        if self.include_source:
            message += f" ({record.filename}:{record.lineno})"

        columns = [f"{record.levelname:<8}", record.name, message]
        if self.include_timestamp:
            columns.insert(0, self.formatTime(record, self.datefmt))
        line = " | ".join(columns)

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class SyncLogger(logging.LoggerAdapter):
    """Logger adapter whose keyword arguments become structured fields.

    ``logger.info("Seek applied", stream=1, target=4.2)``
    """

    def __init__(self, logger: logging.Logger, component: str, extra: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(logger, extra or {})
        self.component = component

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        record_kwargs = {key: kwargs.pop(key) for key in _RECORD_KWARGS if key in kwargs}
        fields = dict(self.extra)
        fields.update(kwargs)

        extra = dict(record_kwargs.get("extra") or {})
        extra["extra_fields"] = fields
        record_kwargs["extra"] = extra
        return msg, record_kwargs


_log_config: Optional[LogConfig] = None
_loggers: Dict[str, SyncLogger] = {}


def _formatter_for(config: LogConfig) -> logging.Formatter:
    if config.log_format == "json":
        return JSONFormatter(include_source=config.include_source)
    return TextFormatter(include_timestamp=config.include_timestamp, include_source=config.include_source)


def configure_logging(config: Optional[LogConfig] = None) -> None:
    """(Re)configure the ``anglesync`` logger; earlier handlers are closed."""
    global _log_config

    config = config or LogConfig()
    _log_config = config
    level = logging.getLevelName(config.log_level)

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    handlers = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        ))

    formatter = _formatter_for(config)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        package_logger.addHandler(handler)

    package_logger.setLevel(level)
    package_logger.propagate = False

    for component, component_level in config.component_levels.items():
        set_level(component_level, component)


def get_logger(component: str) -> SyncLogger:
    """Structured logger for ``anglesync.<component>``; configures defaults on first use."""
    if _log_config is None:
        configure_logging()

    logger = _loggers.get(component)
    if logger is None:
        logger = SyncLogger(logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}"), component)
        _loggers[component] = logger
    return logger


def set_level(level: LogLevel, component: Optional[str] = None) -> None:
    """Set the level of ``anglesync.<component>``, or of the package logger."""
    name = f"{ROOT_LOGGER_NAME}.{component}" if component else ROOT_LOGGER_NAME
    logging.getLogger(name).setLevel(_level_name(level, name))


def configure_from_cli(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
    component_levels: Optional[Dict[str, LogLevel]] = None,
) -> LogConfig:
    """Build a LogConfig from command-line values and apply it.

    Unknown formats fall back to text; a missing level means INFO.
    """
    config = LogConfig(
        log_level=log_level or "INFO",
        log_format=log_format if log_format in VALID_FORMATS else "text",
        log_file=log_file,
        component_levels=component_levels or {},
    )
    configure_logging(config)
    return config


def get_cli_args_parser():
    """``(flags, kwargs)`` pairs for ``parser.add_argument``.

    Defaults are None so that values from config files apply when a flag
    is not given.
    """
    return [
        (("--log-level",), {
            "type": str.upper,
            "choices": list(VALID_LEVELS),
            "default": None,
            "help": "Logging level (default: logging.log_level from config, else WARNING)",
        }),
        (("--log-format",), {
            "choices": list(VALID_FORMATS),
            "default": None,
            "help": "Log output format (default: logging.log_format from config, else text)",
        }),
        (("--log-file",), {
            "default": None,
            "help": "Also write logs to this file",
        }),
    ]


__all__ = [
    "ROOT_LOGGER_NAME",
    "LogConfig",
    "JSONFormatter",
    "TextFormatter",
    "SyncLogger",
    "configure_logging",
    "get_logger",
    "set_level",
    "configure_from_cli",
    "get_cli_args_parser",
]
