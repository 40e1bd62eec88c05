import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional
from cti.config.models import ImmichConfig
from cti.domain.errors import ConfigError, ToolNotFoundError, UploadError
from cti.infrastructure.tools import current_platform, find_executable, home_bin

# Output immich-go prints when a dry run finds nothing to send; not an error.
_EMPTY_UPLOAD_MARKERS = ("no files", "0 files", "0 asset", "Nothing to upload")


def _candidates() -> List[str]:
    names = ["immich-go"]
    system = current_platform()
    if system == "windows":
        names += ["immich-go.exe", home_bin("go", "bin", "immich-go.exe")]
    elif system == "darwin":
        names += [
            "/usr/local/bin/immich-go",
            "/opt/homebrew/bin/immich-go",
            home_bin("go", "bin", "immich-go"),
        ]
    else:
        names += ["/usr/local/bin/immich-go", home_bin("go", "bin", "immich-go")]
    return names


class ImmichUploader:
    """Wrapper around `immich-go upload from-folder`."""

    def __init__(self, config: ImmichConfig, show_progress: bool = False):
        self.config = config
        self.show_progress = show_progress
        self.executable: Optional[str] = None
        self.logger = logging.getLogger(__name__)

    def check_available(self) -> None:
        self.executable = find_executable(self.config.executable, _candidates())
        if not self.executable:
            wanted = self.config.executable or "immich-go"
            raise ToolNotFoundError(f"immich-go not found at '{wanted}'")
        if not self.config.server_url:
            raise ConfigError("immich server URL is required")
        if not self.config.api_key:
            raise ConfigError("immich API key is required")

    def _base_command(self) -> List[str]:
        return [
            self.executable or "immich-go",
            "upload",
            "from-folder",
            "--server", self.config.server_url or "",
            "--api-key", self.config.api_key or "",
        ]

    def _build_command(self, directory: Path, tags: List[str], recursive: bool) -> List[str]:
        cmd = self._base_command()
        cmd.extend(["--on-errors", "continue", "--skip-verify-ssl"])
        if not self.show_progress:
            cmd.append("--no-ui")
        if not recursive:
            cmd.append("--recursive=false")
        for tag in [*self.config.tags, *tags]:
            cmd.extend(["--tag", tag])
        if self.config.album:
            cmd.extend(["--into-album", self.config.album])
        cmd.append(str(directory))
        return cmd

    def upload_batch(self, directory: Path, tags: List[str], recursive: bool = False) -> None:
        """Uploads every file in directory in one immich-go call. Raises UploadError."""
        cmd = self._build_command(Path(directory), tags, recursive)
        self.logger.debug(f"IMMICH_CMD: {' '.join(c if c != self.config.api_key else '***' for c in cmd)}")

        try:
            if self.show_progress:
                # Let immich-go draw its own progress on the terminal
                result = subprocess.run(cmd)
                output = ""
            else:
                result = subprocess.run(cmd, capture_output=True, text=True)
                output = ((result.stdout or "") + (result.stderr or "")).strip()
        except OSError as e:
            raise UploadError(f"immich-go could not be started: {e}") from e

        if result.returncode != 0:
            message = f"immich-go upload failed: exit code {result.returncode}"
            if output:
                message += f"\nOutput: {output}"
            raise UploadError(message)

    def upload_single(self, file_path: Path, tags: List[str]) -> None:
        """Stages one file into a throwaway directory and uploads it."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise UploadError(f"file not found: {file_path}")

        with tempfile.TemporaryDirectory(prefix="immich-upload-") as tmp_dir:
            try:
                shutil.copy2(file_path, Path(tmp_dir) / file_path.name)
            except OSError as e:
                raise UploadError(f"failed to copy file to temp directory: {e}") from e
            self.upload_batch(Path(tmp_dir), tags, recursive=False)

    def test_connection(self) -> None:
        """Dry-run upload of an empty directory to verify server URL and API key."""
        with tempfile.TemporaryDirectory(prefix="immich-test-") as tmp_dir:
            cmd = self._base_command() + ["--dry-run", "--no-ui", tmp_dir]
            try:
                result = subprocess.run(cmd, capture_output=True, text=True)
            except OSError as e:
                raise UploadError(f"immich-go could not be started: {e}") from e

        if result.returncode == 0:
            return
        output = (result.stdout or "") + (result.stderr or "")
        if any(marker in output for marker in _EMPTY_UPLOAD_MARKERS):
            return
        raise UploadError(f"connection test failed: exit code {result.returncode}\nOutput: {output.strip()}")
