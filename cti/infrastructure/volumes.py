"""Mounted volume discovery.

Each platform lists removable volumes differently; the pipeline only needs
`resolve(label)` and `list_all()`. `get_volume_resolver()` picks the
implementation for the running platform.
"""

import getpass
import logging
import os
import string
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel
from cti.domain.errors import VolumeNotFoundError
from cti.infrastructure.tools import current_platform

logger = logging.getLogger(__name__)


class VolumeInfo(BaseModel):
    path: Path
    label: str
    letter: str = ""  # Windows only, e.g. "E:"


class VolumeResolver:
    """Base resolver: label matching on top of a platform-specific listing."""

    def list_all(self) -> List[VolumeInfo]:
        raise NotImplementedError

    def resolve(self, label: str) -> VolumeInfo:
        wanted = label.lower()
        for volume in self.list_all():
            if volume.label.lower() == wanted:
                return volume
        raise VolumeNotFoundError(f"drive with label '{label}' not found")


class DirectoryVolumeResolver(VolumeResolver):
    """Volumes are subdirectories of one or more mount roots (macOS, Linux)."""

    def __init__(self, mount_roots: List[Path]):
        self.mount_roots = mount_roots

    def list_all(self) -> List[VolumeInfo]:
        volumes: List[VolumeInfo] = []
        seen = set()
        for mount_root in self.mount_roots:
            try:
                entries = sorted(mount_root.iterdir())
            except OSError:
                continue
            for entry in entries:
                try:
                    if not entry.is_dir():
                        continue
                    # Verify the volume is accessible
                    os.stat(entry)
                except OSError:
                    continue
                # /media/<user> is a mount root, not a volume
                if entry in seen or entry in self.mount_roots:
                    continue
                seen.add(entry)
                volumes.append(VolumeInfo(path=entry, label=entry.name))
        return volumes


def _linux_mount_roots() -> List[Path]:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = os.environ.get("USER", "")
    roots = []
    if user:
        roots += [Path("/media") / user, Path("/run/media") / user]
    roots += [Path("/media"), Path("/mnt")]
    return roots


class WindowsVolumeResolver(VolumeResolver):
    """Drive letters with their volume labels via GetVolumeInformationW."""

    def _label_for(self, root: str) -> Optional[str]:
        import ctypes

        buffer = ctypes.create_unicode_buffer(261)
        ok = ctypes.windll.kernel32.GetVolumeInformationW(
            ctypes.c_wchar_p(root), buffer, ctypes.sizeof(buffer), None, None, None, None, 0
        )
        if not ok:
            return None
        return buffer.value

    def list_all(self) -> List[VolumeInfo]:
        volumes: List[VolumeInfo] = []
        for letter in string.ascii_uppercase:
            root = f"{letter}:\\"
            if not os.path.exists(root):
                continue
            label = self._label_for(root)
            if label is None:
                continue
            volumes.append(VolumeInfo(path=Path(root), label=label, letter=f"{letter}:"))
        return volumes


def get_volume_resolver(system: Optional[str] = None) -> VolumeResolver:
    system = system or current_platform()
    if system == "windows":
        return WindowsVolumeResolver()
    if system == "darwin":
        return DirectoryVolumeResolver([Path("/Volumes")])
    return DirectoryVolumeResolver(_linux_mount_roots())
