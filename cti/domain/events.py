"""Domain events for the card import pipeline.

The orchestrator publishes these on the EventBus while it works; the console
reporter subscribes and renders them. Pipeline code never prints directly.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel
from .models import ConversionOutcome, FileRecord


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class StepStarted(Event):
    """A new phase of the run begins (drive search, scan, upload...)."""

    message: str


class InfoMessage(Event):
    message: str


class SuccessMessage(Event):
    message: str


class ErrorMessage(Event):
    message: str


class PhaseTimed(Event):
    """Elapsed wall time of one phase."""

    label: str
    seconds: float


class VolumeFound(Event):
    label: str
    path: Path


class DiscoveryFinished(Event):
    """Emitted after the card scan and state sync."""

    raw_files: int
    jpg_files: int
    stale_removed: int
    new_files: int


class DryRunListing(Event):
    """Files a real run would submit."""

    files: List[FileRecord]
    action: str


class ConversionStarted(Event):
    total: int
    workers: int


class ConversionFinished(Event):
    """One outcome drained from the worker pool, in completion order."""

    outcome: ConversionOutcome
    completed: int
    total: int
    camera_jpg: Optional[str] = None


class BatchUploaded(Event):
    label: str
    count: int
    seconds: float


class BatchUploadFailed(Event):
    label: str
    error_message: str
