import yaml
from pathlib import Path
from pydantic import ValidationError
from cti.config.models import AppConfig
from cti.domain.errors import ConfigError


def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config into AppConfig. A missing file yields defaults."""
    if not config_path.exists():
        return AppConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping at the top level")

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e


def validate_for_run(config: AppConfig) -> None:
    """Checks settings a processing run depends on; raises ConfigError."""
    general = config.general
    if not general.drive_label:
        raise ConfigError("general.drive_label is required")

    if general.process_raw_files:
        profile = config.rawtherapee.profile_path
        if profile is None:
            raise ConfigError("rawtherapee.profile_path is required when process_raw_files is enabled")
        if not Path(profile).expanduser().exists():
            raise ConfigError(f"PP3 profile not found: {profile}")

    if not general.skip_upload:
        if not config.immich.server_url:
            raise ConfigError("immich.server_url is required (use --skip-upload to skip Immich upload)")
        if not config.immich.api_key:
            raise ConfigError("immich.api_key is required (use --skip-upload to skip Immich upload)")


def write_sample_config(config_path: Path) -> None:
    """Writes a sample config the user is expected to edit."""
    if config_path.exists():
        raise ConfigError(f"Config file already exists: {config_path}")

    sample = AppConfig()
    sample.general.raw_extensions = [".ORF", ".CR2", ".NEF", ".ARW"]
    sample.rawtherapee.profile_path = Path("/path/to/your/profile.pp3")
    sample.immich.server_url = "https://your-immich-server.com"
    sample.immich.api_key = "your-api-key-here"
    sample.immich.album = "Camera Uploads"
    sample.immich.tags = ["camera", "photography"]

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(sample.model_dump(mode="json"), f, sort_keys=False)
    except OSError as e:
        raise ConfigError(f"Failed to write config file {config_path}: {e}") from e
