import logging
import subprocess
import time
from pathlib import Path
from typing import List, Optional
from cti.config.models import RawTherapeeConfig
from cti.domain.errors import ConfigError, ConversionError, ToolNotFoundError
from cti.infrastructure.tools import current_platform, find_executable


def _candidates() -> List[str]:
    names = ["rawtherapee-cli"]
    system = current_platform()
    if system == "windows":
        names += [
            "rawtherapee-cli.exe",
            r"C:\Program Files\RawTherapee\rawtherapee-cli.exe",
            r"C:\Program Files (x86)\RawTherapee\rawtherapee-cli.exe",
        ]
    elif system == "darwin":
        names += [
            "/Applications/RawTherapee.app/Contents/MacOS/rawtherapee-cli",
            "/usr/local/bin/rawtherapee-cli",
            "/opt/homebrew/bin/rawtherapee-cli",
        ]
    return names


def validate_profile(profile_path: Path) -> None:
    """A PP3 profile is an ini-style file that always carries a [Version] section."""
    try:
        content = Path(profile_path).read_text(errors="replace")
    except OSError as e:
        raise ConfigError(f"Failed to read PP3 profile {profile_path}: {e}") from e
    if "[Version]" not in content:
        raise ConfigError(f"Invalid PP3 profile {profile_path}: missing [Version] section")


class RawTherapeeAdapter:
    """Wrapper around rawtherapee-cli for RAW to JPEG conversion."""

    def __init__(self, config: RawTherapeeConfig, output_dir: Path):
        self.config = config
        self.output_dir = Path(output_dir)
        self.executable: Optional[str] = None
        self.logger = logging.getLogger(__name__)

    def check_available(self) -> None:
        """Resolves the executable and prepares the output directory; run once before the pool starts."""
        self.executable = find_executable(self.config.executable, _candidates())
        if not self.executable:
            wanted = self.config.executable or "rawtherapee-cli"
            raise ToolNotFoundError(f"rawtherapee-cli not found at '{wanted}'")

        profile = self.config.profile_path
        if profile is not None:
            if not Path(profile).expanduser().exists():
                raise ConfigError(f"PP3 profile not found at '{profile}'")
            validate_profile(Path(profile).expanduser())

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Failed to create output directory {self.output_dir}: {e}") from e

        self.logger.info(f"RawTherapee: {self.executable} (profile={profile}, quality={self.config.jpeg_quality})")

    def output_path_for(self, input_path: Path) -> Path:
        return self.output_dir / f"{Path(input_path).stem}.jpg"

    def _build_command(self, input_path: Path, output_path: Path) -> List[str]:
        cmd = [
            self.executable or "rawtherapee-cli",
            "-o", str(output_path),
            f"-j{self.config.jpeg_quality}",
            "-Y",  # Overwrite output if it exists
        ]
        if self.config.profile_path is not None:
            cmd.extend(["-p", str(Path(self.config.profile_path).expanduser())])
        # -c must be last: everything after it is an input file
        cmd.extend(["-c", str(input_path)])
        return cmd

    def convert(self, input_path: Path) -> Path:
        """Converts one RAW (or DNG) file and returns the JPEG path."""
        output_path = self.output_path_for(input_path)
        cmd = self._build_command(Path(input_path), output_path)
        self.logger.debug(f"RAWTHERAPEE_CMD: {' '.join(cmd)}")

        start = time.monotonic()
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.config.timeout_s)
        except subprocess.TimeoutExpired as e:
            raise ConversionError(f"rawtherapee-cli timed out after {e.timeout}s") from e
        except OSError as e:
            raise ConversionError(f"rawtherapee-cli could not be started: {e}") from e

        if result.returncode != 0:
            output = (result.stdout or "") + (result.stderr or "")
            raise ConversionError(
                f"rawtherapee-cli exited with code {result.returncode}\nOutput: {output.strip()}"
            )

        if not output_path.exists():
            raise ConversionError(f"output file was not created: {output_path}")

        self.logger.debug(f"RAWTHERAPEE_END: {Path(input_path).name} in {time.monotonic() - start:.2f}s")
        return output_path
