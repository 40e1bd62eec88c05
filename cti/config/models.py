from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

APP_DIR = Path.home() / ".camera-to-immich"
DEFAULT_CONFIG_PATH = APP_DIR / "config.yaml"
DEFAULT_STATE_PATH = APP_DIR / "state.json"
DEFAULT_OUTPUT_DIR = APP_DIR / "output"
DEFAULT_LOG_DIR = APP_DIR

# Each rawtherapee-cli instance can hold 1-2GB; auto mode never goes above this.
DEFAULT_MAX_WORKERS = 4


def normalize_extension(ext: str) -> str:
    """Uppercase with a leading dot: 'orf' -> '.ORF'."""
    normalized = ext.strip().upper()
    if not normalized.startswith("."):
        normalized = f".{normalized}"
    return normalized


class GeneralConfig(BaseModel):
    drive_label: str = "OM SYSTEM"
    raw_extensions: List[str] = Field(default_factory=lambda: [".ORF"])
    output_directory: Path = Field(default=DEFAULT_OUTPUT_DIR)
    state_path: Path = Field(default=DEFAULT_STATE_PATH)
    log_path: Optional[Path] = None
    process_raw_files: bool = True
    upload_camera_jpgs: bool = True
    tag_with_profile_name: bool = True
    cleanup_after_upload: bool = True
    dry_run: bool = False
    skip_upload: bool = False
    limit: int = Field(default=0, ge=0)  # 0 = no limit
    workers: int = Field(default=0, ge=0)  # 0 = auto (cpu count, capped)
    debug: bool = False

    @field_validator("raw_extensions")
    @classmethod
    def normalize_raw_extensions(cls, v: List[str]) -> List[str]:
        normalized: List[str] = []
        for ext in v:
            if not ext or not ext.strip():
                raise ValueError("raw_extensions entries must not be empty")
            value = normalize_extension(ext)
            if value not in normalized:
                normalized.append(value)
        return normalized

    @field_validator("output_directory", "state_path", "log_path")
    @classmethod
    def expand_user(cls, v: Optional[Path]) -> Optional[Path]:
        return Path(v).expanduser() if v is not None else None


class RawTherapeeConfig(BaseModel):
    """rawtherapee-cli settings."""
    executable: Optional[str] = None  # auto-detected when empty
    profile_path: Optional[Path] = None
    jpeg_quality: int = Field(default=92, ge=1, le=100)
    timeout_s: Optional[float] = Field(default=None, gt=0)  # None = wait forever


class DngConfig(BaseModel):
    """Adobe DNG Converter pre-conversion stage, for cameras RawTherapee cannot read yet."""
    enabled: bool = False
    executable: Optional[str] = None
    output_directory: Optional[Path] = None  # temp dir per run when empty
    compressed: bool = False
    embed_original: bool = False
    cleanup: bool = True
    timeout_s: Optional[float] = Field(default=None, gt=0)


class ImmichConfig(BaseModel):
    executable: Optional[str] = None
    server_url: Optional[str] = None
    api_key: Optional[str] = None
    album: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    rawtherapee: RawTherapeeConfig = Field(default_factory=RawTherapeeConfig)
    dng: DngConfig = Field(default_factory=DngConfig)
    immich: ImmichConfig = Field(default_factory=ImmichConfig)

    @property
    def profile_name(self) -> str:
        """Label recorded in the state file and used for the profile tag."""
        if self.rawtherapee.profile_path is None:
            return "default"
        name = Path(self.rawtherapee.profile_path).name
        for suffix in (".pp3", ".PP3"):
            if name.endswith(suffix):
                return name[: -len(suffix)]
        return name
