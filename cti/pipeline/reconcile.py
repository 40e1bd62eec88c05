"""Diff between what is on the card and what the state file remembers.

A file is new when its filename is not in the processed mapping. Content is
never hashed: camera filenames are sequential and unique per card, and
reading every RAW file off a slow card would cost more than the pipeline.
"""

from typing import Dict, Iterable, List, Optional, Set
from pydantic import BaseModel, Field
from cti.domain.models import ConversionJob, FileRecord


class Reconciliation(BaseModel):
    new_files: List[FileRecord] = Field(default_factory=list)
    stale_filenames: Set[str] = Field(default_factory=set)
    total_new: int = 0  # before the limit was applied

    @property
    def limited(self) -> bool:
        return len(self.new_files) < self.total_new


def reconcile(
    discovered: Iterable[FileRecord],
    processed_names: Iterable[str],
    limit: int = 0,
    present_filenames: Optional[Iterable[str]] = None,
) -> Reconciliation:
    """
    Splits the catalog into files to submit and state entries to forget.

    Args:
        discovered: Candidate files in discovery order.
        processed_names: Filenames in the processed mapping.
        limit: Keep only the first `limit` new files (0 = all). Never affects the forget set.
        present_filenames: Every filename on the card, when wider than `discovered`
            (the forget set is computed against this).
    """
    discovered = list(discovered)
    processed = set(processed_names)

    new_files = [f for f in discovered if f.name not in processed]
    total_new = len(new_files)
    if limit > 0:
        new_files = new_files[:limit]

    present = set(present_filenames) if present_filenames is not None else {f.name for f in discovered}
    stale = processed - present

    return Reconciliation(new_files=new_files, stale_filenames=stale, total_new=total_new)


def build_jobs(files: Iterable[FileRecord]) -> List[ConversionJob]:
    return [ConversionJob(sequence_index=i, source_file=f) for i, f in enumerate(files)]


def index_by_match_key(files: Iterable[FileRecord]) -> Dict[str, FileRecord]:
    """First file wins for a repeated match key, in discovery order."""
    index: Dict[str, FileRecord] = {}
    for f in files:
        index.setdefault(f.match_key, f)
    return index


def find_matching_jpg(raw_file: FileRecord, jpg_index: Dict[str, FileRecord]) -> Optional[FileRecord]:
    return jpg_index.get(raw_file.match_key)
