"""Tests for sync state persistence."""

import json
import logging
from unittest.mock import patch

import pytest

from anglesync.errors import PersistenceError
from anglesync.sync.state import SyncState
from anglesync.sync.store import SYNC_KEY, MemorySyncStore, PackageConfigStore


@pytest.fixture
def package_dir(tmp_path):
    """Package directory with an existing config describing two angles."""
    metadata = tmp_path / ".metadata"
    metadata.mkdir()
    (metadata / "config.json").write_text(
        json.dumps({"angles": [{"id": "angle1"}, {"id": "angle2"}], "title": "Match"}),
        encoding="utf-8",
    )
    return tmp_path


class TestMemorySyncStore:
    """Tests for the in-memory store."""

    def test_round_trip(self):
        store = MemorySyncStore()
        state = SyncState(1.0, True, 0.5)
        assert store.save("key", state)
        assert store.load("key") == state
        assert store.load("other") is None


class TestPackageConfigStore:
    """Tests for .metadata/config.json persistence."""

    def test_save_preserves_other_keys(self, package_dir):
        store = PackageConfigStore()
        store.save(str(package_dir), SyncState(2.37, True, 0.93))

        data = json.loads((package_dir / ".metadata" / "config.json").read_text(encoding="utf-8"))
        assert data["title"] == "Match"
        assert len(data["angles"]) == 2
        assert data[SYNC_KEY] == {"syncOffset": 2.37, "isAnalyzed": True, "confidenceScore": 0.93}

    def test_load_saved_state(self, package_dir):
        store = PackageConfigStore()
        store.save(str(package_dir), SyncState(-1.5, True, None))
        assert store.load(str(package_dir)) == SyncState(-1.5, True, None)

    def test_save_creates_metadata_dir(self, tmp_path):
        store = PackageConfigStore()
        store.save(str(tmp_path), SyncState(0.5, True))
        assert (tmp_path / ".metadata" / "config.json").exists()

    def test_no_temp_files_left(self, package_dir):
        PackageConfigStore().save(str(package_dir), SyncState(0.5, True))
        assert [p.name for p in (package_dir / ".metadata").iterdir()] == ["config.json"]

    def test_missing_sync_block(self, package_dir, caplog):
        with caplog.at_level(logging.INFO, logger="anglesync"):
            assert PackageConfigStore().load(str(package_dir)) is None
        assert "No sync data" in caplog.text

    def test_missing_config_file(self, tmp_path):
        assert PackageConfigStore().load(str(tmp_path)) is None

    def test_malformed_sync_block(self, package_dir, caplog):
        path = package_dir / ".metadata" / "config.json"
        path.write_text(json.dumps({SYNC_KEY: {"syncOffset": "soon"}}), encoding="utf-8")
        with caplog.at_level(logging.INFO, logger="anglesync"):
            assert PackageConfigStore().load(str(package_dir)) is None
        assert "Ignoring unusable sync data" in caplog.text

    def test_corrupt_config_raises(self, package_dir):
        (package_dir / ".metadata" / "config.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceError):
            PackageConfigStore().load(str(package_dir))

    def test_non_object_config_raises(self, package_dir):
        (package_dir / ".metadata" / "config.json").write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(PersistenceError):
            PackageConfigStore().read_config(str(package_dir))

    def test_write_failure_raises(self, package_dir):
        with patch("anglesync.sync.store.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(PersistenceError) as exc_info:
                PackageConfigStore().save(str(package_dir), SyncState(1.0, True))
        assert exc_info.value.context.operation == "write"
        assert [p.name for p in (package_dir / ".metadata").iterdir()] == ["config.json"]
