import typer
from pathlib import Path
from typing import Optional
from rich.console import Console
from cti.config.loader import load_config, validate_for_run, write_sample_config
from cti.config.models import AppConfig, DEFAULT_CONFIG_PATH, DEFAULT_LOG_DIR
from cti.domain.errors import CtiError
from cti.infrastructure.logging import setup_logging
from cti.infrastructure.event_bus import EventBus
from cti.infrastructure.file_scanner import FileScanner
from cti.infrastructure.volumes import get_volume_resolver
from cti.infrastructure.state_store import ProcessedStateStore
from cti.infrastructure.rawtherapee import RawTherapeeAdapter
from cti.infrastructure.dng_converter import DngConverterAdapter
from cti.infrastructure.immich import ImmichUploader
from cti.infrastructure.housekeeping import HousekeepingService
from cti.pipeline.orchestrator import Orchestrator
from cti.ui.reporter import ConsoleReporter

__version__ = "1.0.0"

app = typer.Typer(help="camera-to-immich - process new RAW files from a camera card and upload them to Immich")

CONFIG_OPTION_HELP = "Path to YAML config (default: ~/.camera-to-immich/config.yaml)"


def _load(config_path: Optional[Path]) -> AppConfig:
    return load_config(config_path or DEFAULT_CONFIG_PATH)


def _fail(message: str) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    profile: Optional[Path] = typer.Option(None, "--profile", help="Path to PP3 profile (overrides config)"),
    server: Optional[str] = typer.Option(None, "--server", help="Immich server URL (overrides config)"),
    key: Optional[str] = typer.Option(None, "--key", help="Immich API key (overrides config)"),
    output: Optional[Path] = typer.Option(None, "--output", help="Output directory for processed files"),
    drive: Optional[str] = typer.Option(None, "--drive", help="Drive label to search for (overrides config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be done without doing it"),
    jpg_only: bool = typer.Option(False, "--jpg-only", help="Upload JPG files only, skip RAW processing"),
    skip_upload: bool = typer.Option(False, "--skip-upload", help="Process files but skip uploading to Immich"),
    no_camera_jpgs: bool = typer.Option(False, "--no-camera-jpgs", help="Do not upload camera-generated JPGs"),
    keep_files: bool = typer.Option(False, "--keep-files", help="Keep processed files after upload"),
    limit: Optional[int] = typer.Option(None, "--limit", min=0, help="Limit the number of files to process (0 = no limit)"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=0, help="Parallel workers (0 = auto)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Find the camera card, convert new RAW files and upload them to Immich."""
    try:
        config = _load(config_path)
        # Apply CLI overrides
        if profile is not None: config.rawtherapee.profile_path = profile.expanduser()
        if server: config.immich.server_url = server
        if key: config.immich.api_key = key
        if output is not None: config.general.output_directory = output.expanduser()
        if drive: config.general.drive_label = drive
        if dry_run: config.general.dry_run = True
        if jpg_only: config.general.process_raw_files = False
        if skip_upload: config.general.skip_upload = True
        if no_camera_jpgs: config.general.upload_camera_jpgs = False
        if keep_files: config.general.cleanup_after_upload = False
        if limit is not None: config.general.limit = limit
        if workers is not None: config.general.workers = workers
        if debug: config.general.debug = True

        validate_for_run(config)

        logger = setup_logging(DEFAULT_LOG_DIR, debug=config.general.debug, log_path=config.general.log_path)
        logger.info(f"camera-to-immich {__version__} started: drive='{config.general.drive_label}'")
        logger.info(
            f"Config: raw={config.general.process_raw_files}, workers={config.general.workers}, "
            f"limit={config.general.limit}, dry_run={config.general.dry_run}, "
            f"skip_upload={config.general.skip_upload}, dng={config.dng.enabled}"
        )

        bus = EventBus()
        reporter = ConsoleReporter(bus, verbose=config.general.debug)

        housekeeper = HousekeepingService()
        stale = housekeeper.cleanup_stale_scratch_dirs()
        if stale:
            logger.info(f"Removed {stale} stale scratch directories")

        state_store = ProcessedStateStore.load(config.general.state_path)
        if config.general.debug:
            reporter.info(f"Previously processed {state_store.count} files")

        converter = None
        normalizer = None
        if config.general.process_raw_files:
            converter = RawTherapeeAdapter(config.rawtherapee, config.general.output_directory)
            if config.dng.enabled:
                normalizer = DngConverterAdapter(config.dng, config.dng.output_directory)

        uploader = None
        if not config.general.skip_upload:
            uploader = ImmichUploader(config.immich, show_progress=config.general.debug)

        orchestrator = Orchestrator(
            config=config,
            event_bus=bus,
            volume_resolver=get_volume_resolver(),
            file_scanner=FileScanner(config.general.raw_extensions),
            state_store=state_store,
            converter=converter,
            normalizer=normalizer,
            uploader=uploader,
            housekeeper=housekeeper,
        )
        summary = orchestrator.run()
        reporter.print_summary(summary)
        logger.info(f"Run finished: {summary.model_dump()}")

    except KeyboardInterrupt:
        typer.secho("\nStopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except CtiError as e:
        _fail(str(e))

    except Exception as e:
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command("state-info")
def state_info(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Show information about the processed-files state."""
    try:
        config = _load(config_path)
        store = ProcessedStateStore.load(config.general.state_path)
    except CtiError as e:
        _fail(str(e))
    ConsoleReporter(EventBus()).print_state_stats(store.stats(), store.path)


@app.command("clear-state")
def clear_state(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Forget every processed file so the next run reprocesses the whole card."""
    try:
        config = _load(config_path)
        store = ProcessedStateStore.load(config.general.state_path)
        count = store.clear()
        store.save()
    except CtiError as e:
        _fail(str(e))
    typer.echo(f"Cleared {count} processed file entries from state.")


@app.command("list-drives")
def list_drives():
    """List mounted volumes and their labels."""
    volumes = get_volume_resolver().list_all()
    console = Console()
    console.print("Available drives:")
    console.print("─" * 37)
    for volume in volumes:
        label = volume.label or "(no label)"
        if volume.letter:
            console.print(f"  {volume.letter}  {label}  [{volume.path}]", markup=False)
        else:
            console.print(f"  {label}  [{volume.path}]", markup=False)


@app.command()
def init(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Create a sample configuration file."""
    path = config_path or DEFAULT_CONFIG_PATH
    try:
        write_sample_config(path)
    except CtiError as e:
        _fail(str(e))
    typer.echo(f"Sample configuration created at: {path}")
    typer.echo("Please edit this file with your settings before running the processor.")


@app.command()
def version():
    """Show version information."""
    typer.echo(f"camera-to-immich version {__version__}")


if __name__ == "__main__":
    app()
