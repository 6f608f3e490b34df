"""Sync state and its persistence."""

from .store import MemorySyncStore, PackageConfigStore, SyncStore
from .state import SyncState, SyncStateManager

__all__ = [
    "MemorySyncStore",
    "PackageConfigStore",
    "SyncStore",
    "SyncState",
    "SyncStateManager",
]
