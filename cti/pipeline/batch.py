import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
from cti.domain.errors import UploadError
from cti.infrastructure.housekeeping import SCRATCH_PREFIX
from cti.infrastructure.immich import ImmichUploader

PROCESSED_LABEL = "processed"
CAMERA_ORIGINAL_LABEL = "camera-original"


class BatchResult(BaseModel):
    label: str
    requested: int = 0
    staged: List[Path] = Field(default_factory=list)
    copy_failures: List[Path] = Field(default_factory=list)
    uploaded: bool = False
    error: Optional[str] = None
    seconds: float = 0.0


def processed_tags(profile_name: str, tag_with_profile_name: bool) -> List[str]:
    tags = []
    if tag_with_profile_name:
        tags.append(f"profile:{profile_name}")
    tags.append(PROCESSED_LABEL)
    return tags


class BatchAssembler:
    """Collects files produced in this run and uploads them as scratch-directory batches.

    Only this run's files are staged, so an upload never re-sends what has
    accumulated in the output directory from earlier runs.
    """

    def __init__(self, uploader: Optional[ImmichUploader], scratch_root: Optional[Path] = None):
        self.uploader = uploader
        self.scratch_root = scratch_root
        self.processed: List[Path] = []
        self.camera_originals: List[Path] = []
        self.logger = logging.getLogger(__name__)

    def add_processed(self, path: Path) -> None:
        self.processed.append(Path(path))

    def add_camera_original(self, path: Path) -> None:
        self.camera_originals.append(Path(path))

    def _stage(self, label: str, files: List[Path], result: BatchResult) -> Path:
        scratch = Path(tempfile.mkdtemp(
            prefix=f"{SCRATCH_PREFIX}{label}-",
            dir=str(self.scratch_root) if self.scratch_root else None,
        ))
        for path in files:
            try:
                shutil.copy2(path, scratch / path.name)
                result.staged.append(path)
            except OSError as e:
                result.copy_failures.append(path)
                self.logger.error(f"Failed to copy {path.name}: {e}")
        return scratch

    def upload_batch(self, label: str, files: List[Path], tags: List[str]) -> BatchResult:
        """Copies files into a fresh scratch directory and uploads it in one call."""
        result = BatchResult(label=label, requested=len(files))
        if not files:
            return result
        if self.uploader is None:
            raise UploadError("no uploader configured")

        scratch = self._stage(label, files, result)
        try:
            if not result.staged:
                result.error = "no files could be staged"
                return result

            start = time.monotonic()
            try:
                self.uploader.upload_batch(scratch, tags, recursive=False)
            except UploadError as e:
                result.error = str(e)
                self.logger.error(f"Failed to upload {label} batch: {e}")
            else:
                result.uploaded = True
                self.logger.info(f"Uploaded {len(result.staged)} {label} files (tags={tags})")
            result.seconds = time.monotonic() - start
            return result
        finally:
            try:
                shutil.rmtree(scratch)
            except OSError as e:
                self.logger.warning(f"Could not remove scratch directory {scratch}: {e}")
