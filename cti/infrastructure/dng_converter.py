import logging
import subprocess
import time
from pathlib import Path
from typing import List, Optional
from cti.config.models import DngConfig
from cti.domain.errors import ConfigError, ConversionError, ToolNotFoundError
from cti.infrastructure.tools import current_platform, find_executable

# Adobe DNG Converter can exit before the file is fully flushed.
OUTPUT_SETTLE_S = 0.5
OUTPUT_POLL_S = 0.05


def _candidates() -> List[str]:
    system = current_platform()
    if system == "windows":
        return [
            r"C:\Program Files\Adobe\Adobe DNG Converter\Adobe DNG Converter.exe",
            r"C:\Program Files (x86)\Adobe\Adobe DNG Converter\Adobe DNG Converter.exe",
        ]
    if system == "darwin":
        return ["/Applications/Adobe DNG Converter.app/Contents/MacOS/Adobe DNG Converter"]
    return []


class DngConverterAdapter:
    """Wrapper around Adobe DNG Converter, used to normalize RAW files before RawTherapee."""

    def __init__(self, config: DngConfig, output_dir: Optional[Path] = None):
        self.config = config
        self.output_dir = Path(output_dir) if output_dir else None
        self.executable: Optional[str] = None
        self.logger = logging.getLogger(__name__)

    def check_available(self) -> None:
        self.executable = find_executable(self.config.executable, _candidates())
        if not self.executable:
            if self.config.executable:
                raise ToolNotFoundError(f"Adobe DNG Converter not found at '{self.config.executable}'")
            raise ToolNotFoundError(
                "Adobe DNG Converter not found. Please install it or set dng.executable in config"
            )
        if self.output_dir is None:
            raise ConfigError("DNG output directory is not set")
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Failed to create DNG output directory {self.output_dir}: {e}") from e
        self.logger.info(f"DNG Converter: {self.executable} (output={self.output_dir})")

    def _build_command(self, input_path: Path) -> List[str]:
        cmd = [
            self.executable or "Adobe DNG Converter",
            "-c",
            "-d", str(self.output_dir),
            "-o", f"{input_path.stem}.dng",
        ]
        if self.config.compressed:
            cmd.append("-lossy")
        if self.config.embed_original:
            cmd.append("-e")
        cmd.append(str(input_path))
        return cmd

    def _wait_for_output(self, stem: str) -> Optional[Path]:
        candidates = [self.output_dir / f"{stem}.dng", self.output_dir / f"{stem}.DNG"]
        deadline = time.monotonic() + OUTPUT_SETTLE_S
        while True:
            for candidate in candidates:
                if candidate.exists():
                    return candidate
            if time.monotonic() >= deadline:
                return None
            time.sleep(OUTPUT_POLL_S)

    def convert(self, input_path: Path) -> Path:
        """Converts one RAW file to DNG and returns the DNG path."""
        input_path = Path(input_path)
        cmd = self._build_command(input_path)
        self.logger.debug(f"DNG_CMD: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.config.timeout_s)
        except subprocess.TimeoutExpired as e:
            raise ConversionError(f"Adobe DNG Converter timed out after {e.timeout}s") from e
        except OSError as e:
            raise ConversionError(f"Adobe DNG Converter could not be started: {e}") from e

        output = ((result.stdout or "") + (result.stderr or "")).strip()
        if result.returncode != 0:
            raise ConversionError(
                f"Adobe DNG Converter exited with code {result.returncode}\nOutput: {output}"
            )

        dng_path = self._wait_for_output(input_path.stem)
        if dng_path is None:
            raise ConversionError(
                f"DNG output file was not created: {self.output_dir / (input_path.stem + '.dng')}\n"
                f"Command output: {output}"
            )
        return dng_path
