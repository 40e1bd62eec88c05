import logging
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Optional, Tuple

SCRATCH_PREFIX = "cti-batch-"


class HousekeepingService:
    """Service for removing leftover scratch directories and run artifacts."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_stale_scratch_dirs(self, temp_root: Optional[Path] = None) -> int:
        """Removes cti-batch-* directories left behind by crashed runs."""
        root = Path(temp_root) if temp_root else Path(tempfile.gettempdir())
        removed = 0
        for entry in root.glob(f"{SCRATCH_PREFIX}*"):
            if not entry.is_dir():
                continue
            try:
                shutil.rmtree(entry)
                removed += 1
            except OSError as e:
                self.logger.warning(f"Could not remove stale scratch directory {entry}: {e}")
        return removed

    def remove_files(self, paths: Iterable[Path]) -> Tuple[int, int]:
        """Deletes each file independently. Returns (removed, failed)."""
        removed = 0
        failed = 0
        for path in paths:
            try:
                Path(path).unlink()
                removed += 1
            except OSError as e:
                failed += 1
                self.logger.error(f"Failed to delete {Path(path).name}: {e}")
        return removed, failed
