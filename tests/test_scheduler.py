"""Tests for the scratch file cleanup in stalker/scheduler.py."""

import os
import time

from stalker.scheduler import cleanup_temp_files


def _touch(path, age_hours: float):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")
    stamp = time.time() - age_hours * 3600
    os.utime(path, (stamp, stamp))
    return path


class TestCleanupTempFiles:
    """Tests for cleanup_temp_files()."""

    def test_removes_only_old_files(self, tmp_path) -> None:
        old = _touch(tmp_path / "phase1" / "old.png", 2)
        fresh = _touch(tmp_path / "phase1" / "fresh.png", 0.1)

        assert cleanup_temp_files(tmp_path, 1) == 1
        assert not old.exists()
        assert fresh.exists()

    def test_keeps_files_of_live_sessions(self, tmp_path) -> None:
        live = _touch(tmp_path / "phase1" / "7_123_0_1.png", 5)
        snapshot = _touch(tmp_path / "phase1" / "role_nicks_snapshot_7_123.json", 5)

        assert cleanup_temp_files(tmp_path, 1, keep_ids=["7_123"]) == 0
        assert live.exists() and snapshot.exists()

    def test_missing_directory(self, tmp_path) -> None:
        assert cleanup_temp_files(tmp_path / "missing", 1) == 0
