"""Persistent record of files already handled on the current card.

The state file is the only memory CTI keeps between runs. It maps a card
filename to the time it was processed and the profile used, so a file is
never converted twice while it stays on the card.

Two on-disk schemas are understood:

- current (version 2): ``processed_files`` is a mapping keyed by filename.
- legacy (version 1): ``processed_files`` is a flat list of records, or the
  whole document is such a list.

A legacy document is upgraded in memory on load and written back in the
current schema right away. That write is best effort: if it fails the
upgraded in-memory state is still used for the run.

One store instance per process. Concurrent runs against the same state file
are not supported.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Set
from pydantic import ValidationError
from cti.domain.errors import StateFileError
from cti.domain.models import (
    STATE_FORMAT_VERSION,
    LegacyProcessingState,
    ProcessedRecord,
    ProcessingState,
    StateStats,
)

logger = logging.getLogger(__name__)

# Only version 1 documents carry these
LEGACY_KEYS = {"last_processed_file", "last_processed_timestamp"}


def _now() -> datetime:
    return datetime.now().astimezone()


def _parse_current(data: object) -> Optional[ProcessingState]:
    if not isinstance(data, dict) or LEGACY_KEYS & data.keys():
        return None
    try:
        return ProcessingState.model_validate(data)
    except ValidationError:
        return None


def _parse_legacy(data: object) -> Optional[ProcessingState]:
    try:
        if isinstance(data, list):
            legacy = LegacyProcessingState(processed_files=data)
        elif isinstance(data, dict):
            legacy = LegacyProcessingState.model_validate(data)
        else:
            return None
    except ValidationError:
        return None

    state = ProcessingState(version=STATE_FORMAT_VERSION, last_run=legacy.last_processed_timestamp)
    for record in legacy.processed_files:
        state.processed_files[record.filename] = record
    return state


class ProcessedStateStore:
    """Single writer of the processed-files mapping."""

    def __init__(self, path: Path, state: Optional[ProcessingState] = None):
        self.path = Path(path)
        self.state = state if state is not None else ProcessingState()

    @classmethod
    def load(cls, path: Path) -> "ProcessedStateStore":
        """Loads the state file; a missing file gives an empty store."""
        path = Path(path)
        if not path.exists():
            logger.info(f"State file not found, starting empty: {path}")
            return cls(path)

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateFileError(f"Failed to read state file {path}: {e}") from e

        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            raise StateFileError(f"Failed to parse state file {path}: {e}") from e

        state = _parse_current(data)
        if state is not None:
            logger.debug(f"Loaded state: {len(state.processed_files)} entries from {path}")
            return cls(path, state)

        state = _parse_legacy(data)
        if state is None:
            raise StateFileError(f"Failed to parse state file {path}: unrecognized schema")

        store = cls(path, state)
        logger.info(f"Migrated legacy state file ({len(state.processed_files)} entries): {path}")
        try:
            store.save()
        except StateFileError as e:
            logger.warning(f"Could not save migrated state: {e}")
        return store

    @property
    def count(self) -> int:
        return len(self.state.processed_files)

    def is_processed(self, filename: str) -> bool:
        return filename in self.state.processed_files

    def processed_names(self) -> Set[str]:
        """Snapshot of stored filenames."""
        return set(self.state.processed_files)

    def mark_processed(self, filename: str, profile_used: str) -> ProcessedRecord:
        """Upserts the entry for filename and refreshes last_run."""
        now = _now()
        record = ProcessedRecord(filename=filename, processed_at=now, profile_used=profile_used)
        self.state.processed_files[filename] = record
        self.state.last_run = now
        return record

    def sync_with_card(self, present_filenames: Iterable[str]) -> int:
        """Forgets every entry whose filename is no longer on the card."""
        present = set(present_filenames)
        stale = [name for name in self.state.processed_files if name not in present]
        for name in stale:
            del self.state.processed_files[name]
        if stale:
            logger.info(f"Removed {len(stale)} stale state entries (files no longer on card)")
        return len(stale)

    def set_card_id(self, card_id: Optional[str]) -> None:
        self.state.card_id = card_id

    def clear(self) -> int:
        """Drops all entries and the card identity. Caller still has to save()."""
        count = len(self.state.processed_files)
        self.state.processed_files = {}
        self.state.card_id = None
        self.state.last_run = None
        return count

    def save(self) -> None:
        """Writes the whole document to a temp file, then replaces the old one."""
        payload = self.state.model_dump_json(indent=2)
        tmp_name: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=str(self.path.parent),
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning(f"Could not remove temporary state file {tmp_name}")
            raise StateFileError(f"Failed to write state file {self.path}: {e}") from e
        logger.debug(f"Saved state: {self.count} entries to {self.path}")

    def stats(self) -> StateStats:
        size = 0
        try:
            size = self.path.stat().st_size
        except OSError:
            pass
        return StateStats(
            count=self.count,
            last_run=self.state.last_run,
            card_id=self.state.card_id,
            on_disk_size_bytes=size,
        )
