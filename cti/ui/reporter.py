from typing import Optional
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from cti.infrastructure.event_bus import EventBus
from cti.domain.events import (
    BatchUploaded, BatchUploadFailed, ConversionFinished, ConversionStarted,
    DiscoveryFinished, DryRunListing, ErrorMessage, InfoMessage, PhaseTimed,
    StepStarted, SuccessMessage, VolumeFound,
)
from cti.domain.models import RunSummary, StateStats


class ConsoleReporter:
    """Subscribes to EventBus and renders pipeline progress as console lines."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None, verbose: bool = False):
        self.bus = bus
        self.console = console or Console()
        self.verbose = verbose
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(StepStarted, self.on_step)
        self.bus.subscribe(InfoMessage, self.on_info)
        self.bus.subscribe(SuccessMessage, self.on_success)
        self.bus.subscribe(ErrorMessage, self.on_error)
        self.bus.subscribe(PhaseTimed, self.on_timing)
        self.bus.subscribe(VolumeFound, self.on_volume_found)
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(DryRunListing, self.on_dry_run_listing)
        self.bus.subscribe(ConversionStarted, self.on_conversion_started)
        self.bus.subscribe(ConversionFinished, self.on_conversion_finished)
        self.bus.subscribe(BatchUploaded, self.on_batch_uploaded)
        self.bus.subscribe(BatchUploadFailed, self.on_batch_failed)

    def step(self, message: str):
        self.console.print(f"[bold cyan]►[/] {escape(message)}")

    def success(self, message: str):
        self.console.print(f"[green]✓[/] {escape(message)}")

    def info(self, message: str):
        self.console.print(f"[blue]ℹ[/] {escape(message)}")

    def error(self, message: str):
        self.console.print(f"[bold red]✗[/] {escape(message)}")

    def on_step(self, event: StepStarted):
        self.step(event.message)

    def on_info(self, event: InfoMessage):
        self.info(event.message)

    def on_success(self, event: SuccessMessage):
        self.success(event.message)

    def on_error(self, event: ErrorMessage):
        self.error(event.message)

    def on_timing(self, event: PhaseTimed):
        self.console.print(f"[dim]⏱ {escape(event.label)}: {event.seconds:.2f}s[/]")

    def on_volume_found(self, event: VolumeFound):
        self.success(f"Found drive at: {event.path}")

    def on_discovery_finished(self, event: DiscoveryFinished):
        self.info(f"Found {event.raw_files} RAW files and {event.jpg_files} JPG files")

    def on_dry_run_listing(self, event: DryRunListing):
        self.info(f"DRY RUN - Would {event.action} the following files:")
        for f in event.files:
            self.console.print(f"  - {escape(f.name)}")

    def on_conversion_started(self, event: ConversionStarted):
        self.info(f"Processing {event.total} files with {event.workers} parallel workers...")

    def on_conversion_finished(self, event: ConversionFinished):
        outcome = event.outcome
        prefix = f"[{event.completed}/{event.total}]"
        if not outcome.ok:
            self.error(f"{prefix} Failed to process {outcome.source_file.name}: {outcome.error}")
            return
        self.success(f"{prefix} Created: {outcome.output_path.name} ({outcome.elapsed:.1f}s)")
        if self.verbose and event.camera_jpg:
            self.info(f"Found matching camera JPG: {event.camera_jpg}")

    def on_batch_uploaded(self, event: BatchUploaded):
        self.success(f"Uploaded {event.count} {event.label} files ({event.seconds:.1f}s)")

    def on_batch_failed(self, event: BatchUploadFailed):
        self.error(f"Failed to upload {event.label} files: {event.error_message}")

    def print_summary(self, summary: RunSummary):
        table = Table(title="Run summary" + (" (dry run)" if summary.dry_run else ""), show_header=False)
        table.add_column("Metric")
        table.add_column("Value", justify="right")
        table.add_row("RAW files on card", str(summary.discovered_raw))
        table.add_row("JPG files on card", str(summary.discovered_jpg))
        table.add_row("Stale state entries removed", str(summary.stale_removed))
        table.add_row("Submitted", str(summary.submitted))
        table.add_row("Converted", str(summary.converted))
        table.add_row("Failed", str(summary.failed))
        table.add_row("Uploaded (processed)", str(summary.uploaded_processed))
        table.add_row("Uploaded (camera)", str(summary.uploaded_camera))
        table.add_row("Upload failures", str(summary.upload_failures))
        table.add_row("Copy failures", str(summary.copy_failures))
        table.add_row("Files cleaned up", str(summary.cleaned))
        table.add_row("Cleanup failures", str(summary.cleanup_failures))
        self.console.print(table)

    def print_state_stats(self, stats: StateStats, path):
        self.console.print(f"State file: {escape(str(path))}")
        self.console.print(f"Processed files: {stats.count}")
        last_run = stats.last_run.strftime("%Y-%m-%d %H:%M:%S") if stats.last_run else "never"
        self.console.print(f"Last run: {last_run}")
        if stats.card_id:
            self.console.print(f"Card ID: {escape(stats.card_id)}")
        self.console.print(f"File size: {stats.on_disk_size_bytes} bytes")
