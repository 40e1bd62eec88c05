import pytest
import shutil
from pathlib import Path
from unittest.mock import patch
from cti.infrastructure.housekeeping import HousekeepingService, SCRATCH_PREFIX

def test_housekeeping_cleanup_stale_scratch_dirs(tmp_path):
    stale = tmp_path / f"{SCRATCH_PREFIX}processed-abc"
    stale.mkdir()
    (stale / "A.jpg").write_text("data")
    other = tmp_path / "unrelated-dir"
    other.mkdir()
    (tmp_path / f"{SCRATCH_PREFIX}not-a-dir").write_text("file")

    service = HousekeepingService()
    removed = service.cleanup_stale_scratch_dirs(tmp_path)

    assert removed == 1
    assert not stale.exists()
    assert other.exists()
    assert (tmp_path / f"{SCRATCH_PREFIX}not-a-dir").exists()

def test_housekeeping_scratch_cleanup_handles_oserror(tmp_path):
    stale = tmp_path / f"{SCRATCH_PREFIX}camera-original-xyz"
    stale.mkdir()

    service = HousekeepingService()
    with patch.object(shutil, "rmtree", side_effect=OSError("Permission denied")):
        # Should not raise exception
        removed = service.cleanup_stale_scratch_dirs(tmp_path)

    assert removed == 0
    assert stale.exists()

def test_housekeeping_remove_files(tmp_path):
    a = tmp_path / "A.jpg"
    b = tmp_path / "B.jpg"
    a.write_text("data")
    b.write_text("data")
    missing = tmp_path / "missing.jpg"

    service = HousekeepingService()
    removed, failed = service.remove_files([a, missing, b])

    assert (removed, failed) == (2, 1)
    assert not a.exists()
    assert not b.exists()

def test_housekeeping_remove_files_logs_failures(tmp_path, caplog):
    service = HousekeepingService()
    with caplog.at_level("ERROR"):
        service.remove_files([tmp_path / "gone.jpg"])
    assert "Failed to delete gone.jpg" in caplog.text
