from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

STATE_FORMAT_VERSION = 2


class FileKind(str, Enum):
    RAW = "RAW"
    JPEG = "JPEG"


class FileRecord(BaseModel):
    """A file found on the card. Rebuilt every run, never persisted."""
    model_config = ConfigDict(frozen=True)

    path: Path
    name: str
    match_key: str  # name without extension, pairs RAW with camera JPEG
    size_bytes: int
    modified_at: datetime
    kind: FileKind


class ScanResult(BaseModel):
    root: Path
    raw_files: List[FileRecord] = Field(default_factory=list)
    jpg_files: List[FileRecord] = Field(default_factory=list)

    def all_names(self) -> set:
        return {f.name for f in self.raw_files} | {f.name for f in self.jpg_files}


def _never_if_zero(value: Optional[datetime]) -> Optional[datetime]:
    # Older state files store "never" as 0001-01-01T00:00:00Z
    if value is not None and value.year <= 1:
        return None
    return value


class ProcessedRecord(BaseModel):
    filename: str
    processed_at: datetime
    profile_used: str = ""


class ProcessingState(BaseModel):
    """On-disk document of the state file (current schema)."""
    version: int = STATE_FORMAT_VERSION
    card_id: Optional[str] = None
    last_run: Optional[datetime] = None
    processed_files: Dict[str, ProcessedRecord] = Field(default_factory=dict)

    @field_validator("processed_files", mode="before")
    @classmethod
    def null_as_empty_mapping(cls, v):
        return {} if v is None else v

    @field_validator("last_run")
    @classmethod
    def zero_time_as_never(cls, v):
        return _never_if_zero(v)


class LegacyProcessingState(BaseModel):
    """Version 1 document: processed files kept as a flat list."""
    last_processed_file: Optional[str] = None
    last_processed_timestamp: Optional[datetime] = None
    processed_files: List[ProcessedRecord] = Field(default_factory=list)

    @field_validator("processed_files", mode="before")
    @classmethod
    def null_as_empty_list(cls, v):
        return [] if v is None else v

    @field_validator("last_processed_timestamp")
    @classmethod
    def zero_time_as_never(cls, v):
        return _never_if_zero(v)


class StateStats(BaseModel):
    count: int
    last_run: Optional[datetime] = None
    card_id: Optional[str] = None
    on_disk_size_bytes: int = 0


class ConversionJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence_index: int
    source_file: FileRecord


class ConversionOutcome(BaseModel):
    sequence_index: int
    source_file: FileRecord
    output_path: Optional[Path] = None
    intermediate_path: Optional[Path] = None  # DNG produced by the normalizer
    elapsed: float = 0.0
    error: Optional[str] = None

    @model_validator(mode="after")
    def validate_result(self):
        if (self.output_path is None) == (self.error is None):
            raise ValueError("exactly one of output_path or error must be set")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None


class RunSummary(BaseModel):
    discovered_raw: int = 0
    discovered_jpg: int = 0
    stale_removed: int = 0
    submitted: int = 0
    converted: int = 0
    failed: int = 0
    uploaded_processed: int = 0
    uploaded_camera: int = 0
    upload_failures: int = 0
    copy_failures: int = 0
    cleaned: int = 0
    cleanup_failures: int = 0
    dry_run: bool = False
