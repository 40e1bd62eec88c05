import os
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Set
from cti.config.models import normalize_extension
from cti.domain.models import FileKind, FileRecord, ScanResult

JPEG_EXTENSIONS = {".JPG", ".JPEG"}


class FileScanner:
    """Walks a card and sorts image files into RAW and camera JPEG groups."""

    def __init__(self, raw_extensions: Iterable[str]):
        self.raw_extensions: Set[str] = {normalize_extension(ext) for ext in raw_extensions}

    def classify(self, name: str) -> Optional[FileKind]:
        ext = os.path.splitext(name)[1].upper()
        if ext in self.raw_extensions:
            return FileKind.RAW
        if ext in JPEG_EXTENSIONS:
            return FileKind.JPEG
        return None

    def scan(self, root_dir: Path) -> ScanResult:
        """Scans the card root and returns files in deterministic (sorted) order."""
        result = ScanResult(root=root_dir)

        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)
            # .Trashes, .Spotlight-V100, .fseventsd
            dirs[:] = sorted(d for d in dirs if not d.startswith("."))
            files.sort()

            for file_name in files:
                # macOS AppleDouble artifacts
                if file_name.startswith("._"):
                    continue

                kind = self.classify(file_name)
                if kind is None:
                    continue

                file_path = root_path / file_name
                try:
                    file_stat = file_path.stat()
                except OSError:
                    # Skip files we can't access
                    continue

                record = FileRecord(
                    path=file_path,
                    name=file_name,
                    match_key=os.path.splitext(file_name)[0],
                    size_bytes=file_stat.st_size,
                    modified_at=datetime.fromtimestamp(file_stat.st_mtime),
                    kind=kind,
                )
                if kind is FileKind.RAW:
                    result.raw_files.append(record)
                else:
                    result.jpg_files.append(record)

        return result
