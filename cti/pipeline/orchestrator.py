"""Pipeline orchestrator for one card import run.

Wires the run together: locate the card, scan it, reconcile against the
processed state, convert new RAW files on the worker pool, upload the results
in batches, clean up, and persist the state. Progress is published on the
EventBus; nothing here prints.

Key rules:
- Missing tools, a missing card and state I/O failures abort the run (raised).
- Per-file conversion, copy, upload and delete failures are logged, counted in
  the RunSummary and never abort the run. Failed files stay unmarked, so the
  next run retries them.
- Only this thread mutates the state store; workers only return outcomes.
"""

import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import List, Optional
from cti.config.models import AppConfig
from cti.domain.errors import UploadError
from cti.domain.events import (
    BatchUploaded,
    BatchUploadFailed,
    ConversionFinished,
    ConversionStarted,
    DiscoveryFinished,
    DryRunListing,
    ErrorMessage,
    InfoMessage,
    PhaseTimed,
    StepStarted,
    SuccessMessage,
    VolumeFound,
)
from cti.domain.models import FileRecord, RunSummary, ScanResult
from cti.infrastructure.dng_converter import DngConverterAdapter
from cti.infrastructure.event_bus import EventBus
from cti.infrastructure.file_scanner import FileScanner
from cti.infrastructure.housekeeping import HousekeepingService
from cti.infrastructure.immich import ImmichUploader
from cti.infrastructure.rawtherapee import RawTherapeeAdapter
from cti.infrastructure.state_store import ProcessedStateStore
from cti.infrastructure.volumes import VolumeResolver
from cti.pipeline.batch import (
    CAMERA_ORIGINAL_LABEL,
    PROCESSED_LABEL,
    BatchAssembler,
    BatchResult,
    processed_tags,
)
from cti.pipeline.reconcile import Reconciliation, build_jobs, find_matching_jpg, index_by_match_key, reconcile
from cti.pipeline.worker_pool import WorkerPool, resolve_worker_count

JPG_ONLY_PROFILE = "jpg-only"


class Orchestrator:
    """Runs the card import pipeline once.

    Args:
        config: Fully resolved AppConfig (file + CLI overrides).
        event_bus: EventBus for progress events.
        volume_resolver: Finds the card by label.
        file_scanner: Walks the card and classifies RAW/JPEG files.
        state_store: Loaded processed-files state; saved at the end of a real run.
        converter: RawTherapee adapter (None in JPEG-only mode).
        normalizer: Optional DNG pre-conversion stage.
        uploader: immich-go wrapper (None when uploads are skipped).
        housekeeper: Deletes outputs and intermediates after the run.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        volume_resolver: VolumeResolver,
        file_scanner: FileScanner,
        state_store: ProcessedStateStore,
        converter: Optional[RawTherapeeAdapter] = None,
        normalizer: Optional[DngConverterAdapter] = None,
        uploader: Optional[ImmichUploader] = None,
        housekeeper: Optional[HousekeepingService] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.volume_resolver = volume_resolver
        self.file_scanner = file_scanner
        self.state_store = state_store
        self.converter = converter
        self.normalizer = normalizer
        self.uploader = uploader
        self.housekeeper = housekeeper or HousekeepingService()
        self.logger = logging.getLogger(__name__)

    def _timed(self, label: str, start: float) -> None:
        self.event_bus.publish(PhaseTimed(label=label, seconds=time.monotonic() - start))

    def _discover(self, summary: RunSummary) -> ScanResult:
        general = self.config.general

        self.event_bus.publish(StepStarted(message=f"Searching for drive '{general.drive_label}'..."))
        start = time.monotonic()
        volume = self.volume_resolver.resolve(general.drive_label)
        self.event_bus.publish(VolumeFound(label=volume.label, path=volume.path))
        self._timed("Drive detection", start)
        self.state_store.set_card_id(volume.label)

        exts = ", ".join(general.raw_extensions)
        self.event_bus.publish(StepStarted(message=f"Scanning for RAW files ({exts}) and JPG files..."))
        start = time.monotonic()
        scan = self.file_scanner.scan(volume.path)
        self._timed("File scanning", start)

        summary.discovered_raw = len(scan.raw_files)
        summary.discovered_jpg = len(scan.jpg_files)
        self.logger.info(
            f"Scan of {volume.path}: {summary.discovered_raw} RAW, {summary.discovered_jpg} JPG"
        )

        # Must run before filtering: a name reused by a new file is not "already processed"
        summary.stale_removed = self.state_store.sync_with_card(scan.all_names())
        if summary.stale_removed:
            self.event_bus.publish(InfoMessage(
                message=f"Cleaned up {summary.stale_removed} stale entries from state (files no longer on card)"
            ))
        return scan

    def _check_tools(self, converting: bool) -> None:
        """Pool-wide fatal conditions are detected here, before any job runs."""
        if converting:
            self.event_bus.publish(StepStarted(message="Initializing RawTherapee processor..."))
            self.converter.check_available()
            self.event_bus.publish(SuccessMessage(message=f"Using profile: {self.config.profile_name}"))
            if self.normalizer is not None:
                self.event_bus.publish(StepStarted(message="Initializing Adobe DNG Converter..."))
                self.normalizer.check_available()
                self.event_bus.publish(
                    SuccessMessage(message=f"DNG Converter initialized (output: {self.normalizer.output_dir})")
                )

        if self.config.general.skip_upload:
            self.event_bus.publish(InfoMessage(message="Skipping Immich initialization (--skip-upload)"))
            return
        self.event_bus.publish(StepStarted(message="Initializing Immich uploader..."))
        self.uploader.check_available()
        self.uploader.test_connection()
        self.event_bus.publish(SuccessMessage(message="Connected to Immich server"))

    def run(self) -> RunSummary:
        """Executes one run. Raises CtiError subclasses for run-aborting failures."""
        summary = RunSummary(dry_run=self.config.general.dry_run)
        total_start = time.monotonic()

        scan = self._discover(summary)
        if self.config.general.process_raw_files:
            self._run_raw(scan, summary)
        else:
            self._run_jpg_only(scan, summary)

        self._timed("TOTAL TIME", total_start)
        return summary

    def _select(
        self, candidates: List[FileRecord], scan: ScanResult, summary: RunSummary, kind: str
    ) -> Optional[Reconciliation]:
        """Reconciles candidates against state and reports what was found. Returns None when idle."""
        result = reconcile(
            candidates,
            self.state_store.processed_names(),
            limit=self.config.general.limit,
            present_filenames=scan.all_names(),
        )
        self.event_bus.publish(DiscoveryFinished(
            raw_files=summary.discovered_raw,
            jpg_files=summary.discovered_jpg,
            stale_removed=summary.stale_removed,
            new_files=len(result.new_files),
        ))

        if not result.new_files:
            self.event_bus.publish(SuccessMessage(message=f"No new {kind} files to process!"))
            if not self.config.general.dry_run:
                self.state_store.save()
            return None

        if result.limited:
            self.event_bus.publish(InfoMessage(
                message=f"Limiting to {len(result.new_files)} files (out of {result.total_new} new files)"
            ))
        self.event_bus.publish(InfoMessage(message=f"{len(result.new_files)} new {kind} files to process"))
        return result

    def _run_raw(self, scan: ScanResult, summary: RunSummary) -> None:
        general = self.config.general
        result = self._select(scan.raw_files, scan, summary, "RAW")
        if result is None:
            return

        if general.dry_run:
            self.event_bus.publish(DryRunListing(files=result.new_files, action="process"))
            return

        temp_dng_dir: Optional[Path] = None
        if self.normalizer is not None and self.normalizer.output_dir is None:
            temp_dng_dir = Path(tempfile.mkdtemp(prefix="cti-dng-"))
            self.normalizer.output_dir = temp_dng_dir

        try:
            self._check_tools(converting=True)
            self._convert_and_upload(scan, result.new_files, summary)
        finally:
            if temp_dng_dir is not None:
                shutil.rmtree(temp_dng_dir, ignore_errors=True)

        self.state_store.save()
        self.event_bus.publish(SuccessMessage(message=f"Done! Processed {summary.converted} files."))

    def _convert_and_upload(self, scan: ScanResult, new_files: List[FileRecord], summary: RunSummary) -> None:
        general = self.config.general
        profile_name = self.config.profile_name
        jobs = build_jobs(new_files)
        total = len(jobs)
        summary.submitted = total

        pool = WorkerPool(self.converter, normalizer=self.normalizer, workers=general.workers)
        workers = resolve_worker_count(general.workers, total)
        self.event_bus.publish(ConversionStarted(total=total, workers=workers))
        if self.normalizer is not None:
            self.event_bus.publish(InfoMessage(message="DNG conversion enabled for camera compatibility"))

        assembler = BatchAssembler(self.uploader)
        jpg_index = index_by_match_key(scan.jpg_files)
        intermediates: List[Path] = []
        completed = 0
        busy_time = 0.0

        for outcome in pool.run(jobs):
            completed += 1
            busy_time += outcome.elapsed
            if outcome.intermediate_path is not None:
                intermediates.append(outcome.intermediate_path)

            if not outcome.ok:
                summary.failed += 1
                self.logger.error(
                    f"[{completed}/{total}] Failed to process {outcome.source_file.name}: {outcome.error}"
                )
                self.event_bus.publish(ConversionFinished(outcome=outcome, completed=completed, total=total))
                continue

            summary.converted += 1
            assembler.add_processed(outcome.output_path)
            camera_jpg = None
            if general.upload_camera_jpgs:
                match = find_matching_jpg(outcome.source_file, jpg_index)
                if match is not None:
                    assembler.add_camera_original(match.path)
                    camera_jpg = match.name
            self.state_store.mark_processed(outcome.source_file.name, profile_name)
            self.event_bus.publish(ConversionFinished(
                outcome=outcome, completed=completed, total=total, camera_jpg=camera_jpg
            ))

        if summary.converted:
            stage = "DNG conversion + RawTherapee processing" if self.normalizer else "RawTherapee processing"
            self.event_bus.publish(PhaseTimed(label=f"{stage} ({summary.converted} files)", seconds=busy_time))

        uploaded_outputs: List[Path] = []
        if general.skip_upload:
            self.event_bus.publish(InfoMessage(message="Upload skipped (--skip-upload)"))
        else:
            tags = processed_tags(profile_name, general.tag_with_profile_name)
            if assembler.processed:
                self.event_bus.publish(StepStarted(
                    message=f"Uploading {len(assembler.processed)} processed JPGs to Immich (batch upload)..."
                ))
                processed = self._upload(assembler, PROCESSED_LABEL, assembler.processed, tags, summary)
                summary.uploaded_processed = len(processed.staged) if processed.uploaded else 0
                if processed.uploaded:
                    uploaded_outputs = processed.staged
            if general.upload_camera_jpgs and assembler.camera_originals:
                self.event_bus.publish(StepStarted(
                    message=f"Uploading {len(assembler.camera_originals)} camera JPGs to Immich (batch upload)..."
                ))
                camera = self._upload(
                    assembler, CAMERA_ORIGINAL_LABEL, assembler.camera_originals, [CAMERA_ORIGINAL_LABEL], summary
                )
                summary.uploaded_camera = len(camera.staged) if camera.uploaded else 0

        if general.cleanup_after_upload and not general.skip_upload and uploaded_outputs:
            self.event_bus.publish(StepStarted(message="Cleaning up processed files from output directory..."))
            removed, failed = self.housekeeper.remove_files(uploaded_outputs)
            summary.cleaned += removed
            summary.cleanup_failures += failed
            self.event_bus.publish(SuccessMessage(message=f"Deleted {removed} processed files"))

        if self.normalizer is not None and self.config.dng.cleanup and intermediates:
            self.event_bus.publish(StepStarted(message="Cleaning up intermediate DNG files..."))
            removed, failed = self.housekeeper.remove_files(intermediates)
            summary.cleaned += removed
            summary.cleanup_failures += failed
            self.event_bus.publish(SuccessMessage(message=f"Deleted {removed} intermediate DNG files"))

    def _upload(
        self,
        assembler: BatchAssembler,
        label: str,
        files: List[Path],
        tags: List[str],
        summary: RunSummary,
    ) -> BatchResult:
        result = assembler.upload_batch(label, files, tags)
        summary.copy_failures += len(result.copy_failures)
        if result.uploaded:
            self.event_bus.publish(BatchUploaded(label=label, count=len(result.staged), seconds=result.seconds))
        else:
            summary.upload_failures += 1
            self.event_bus.publish(BatchUploadFailed(label=label, error_message=result.error or "unknown error"))
        return result

    def _run_jpg_only(self, scan: ScanResult, summary: RunSummary) -> None:
        """Uploads new camera JPEGs one by one; nothing is converted."""
        self.event_bus.publish(InfoMessage(message="RAW processing disabled - uploading JPG files only"))
        result = self._select(scan.jpg_files, scan, summary, "JPG")
        if result is None:
            return

        if self.config.general.dry_run:
            self.event_bus.publish(DryRunListing(files=result.new_files, action="upload"))
            return

        self._check_tools(converting=False)
        if self.config.general.skip_upload:
            self.event_bus.publish(InfoMessage(message="Upload skipped (--skip-upload), nothing to do"))
            self.state_store.save()
            return

        total = len(result.new_files)
        summary.submitted = total
        self.event_bus.publish(StepStarted(message=f"Uploading {total} JPG files to Immich..."))
        start = time.monotonic()
        for i, jpg in enumerate(result.new_files, start=1):
            try:
                self.uploader.upload_single(jpg.path, [CAMERA_ORIGINAL_LABEL])
            except UploadError as e:
                summary.upload_failures += 1
                self.logger.error(f"Failed to upload {jpg.name}: {e}")
                self.event_bus.publish(ErrorMessage(message=f"[{i}/{total}] Failed to upload {jpg.name}: {e}"))
                continue
            summary.uploaded_camera += 1
            self.state_store.mark_processed(jpg.name, JPG_ONLY_PROFILE)
            self.logger.info(f"[{i}/{total}] Uploaded {jpg.name}")
        self._timed(f"JPG upload ({summary.uploaded_camera} files)", start)

        self.state_store.save()
        self.event_bus.publish(SuccessMessage(message=f"Done! Uploaded {summary.uploaded_camera} JPG files."))
