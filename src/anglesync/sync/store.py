"""Persistence of sync state.

A package is a directory whose ``.metadata/config.json`` describes the
angles; the sync state lives under its ``syncData`` key:

    {
        "angles": [...],
        "syncData": {"syncOffset": 2.37, "isAnalyzed": true, "confidenceScore": 0.93}
    }

Saving only touches ``syncData``; every other key is preserved.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from ..errors import PersistenceError, create_error_context

if TYPE_CHECKING:
    from .state import SyncState

logger = logging.getLogger(__name__)

METADATA_DIR = ".metadata"
CONFIG_FILE = "config.json"
SYNC_KEY = "syncData"


class SyncStore(ABC):
    """Persistence collaborator for ``SyncState``."""

    @abstractmethod
    def save(self, session_key: str, state: "SyncState") -> bool:
        """Store ``state`` for ``session_key``. Returns True on success.

        Raises:
            PersistenceError: If the state could not be written.
        """

    @abstractmethod
    def load(self, session_key: str) -> Optional["SyncState"]:
        """Stored state for ``session_key``, or None if there is none."""


class MemorySyncStore(SyncStore):
    """Keeps states in a dictionary. For headless hosts and tests."""

    def __init__(self) -> None:
        self.states: Dict[str, "SyncState"] = {}

    def save(self, session_key: str, state: "SyncState") -> bool:
        self.states[session_key] = state
        return True

    def load(self, session_key: str) -> Optional["SyncState"]:
        return self.states.get(session_key)


class PackageConfigStore(SyncStore):
    """Stores sync state in ``<package>/.metadata/config.json``.

    The session key is the package directory.
    """

    @staticmethod
    def config_path(package_dir: Union[str, Path]) -> Path:
        return Path(package_dir) / METADATA_DIR / CONFIG_FILE

    def read_config(self, package_dir: Union[str, Path]) -> Dict[str, Any]:
        """Whole package config; empty when the file does not exist.

        Raises:
            PersistenceError: If the file exists but is not a JSON object.
        """
        path = self.config_path(package_dir)
        if not path.exists():
            return {}

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(
                f"Failed to read package config: {path}",
                create_error_context("persistence", "read", source=path, error=str(e)),
            ) from e

        if not isinstance(data, dict):
            raise PersistenceError(
                f"Package config is not a JSON object: {path}",
                create_error_context("persistence", "read", source=path),
            )
        return data

    def save(self, session_key: str, state: "SyncState") -> bool:
        path = self.config_path(session_key)
        config = self.read_config(session_key)
        config[SYNC_KEY] = state.to_dict()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{CONFIG_FILE}.", suffix=".tmp", dir=str(path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(config, f, indent=2, ensure_ascii=False)
                    f.write("\n")
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise PersistenceError(
                f"Failed to write package config: {path}",
                create_error_context("persistence", "write", source=path, error=str(e)),
            ) from e

        logger.debug(f"Saved sync state to {path}")
        return True

    def load(self, session_key: str) -> Optional["SyncState"]:
        from .state import SyncState

        config = self.read_config(session_key)
        block = config.get(SYNC_KEY)
        if block is None:
            logger.info(f"No sync data stored for {session_key}")
            return None

        try:
            return SyncState.from_dict(block)
        except ValueError as e:
            logger.info(f"Ignoring unusable sync data in {self.config_path(session_key)}: {e}")
            return None


__all__ = [
    "METADATA_DIR",
    "CONFIG_FILE",
    "SYNC_KEY",
    "SyncStore",
    "MemorySyncStore",
    "PackageConfigStore",
]
