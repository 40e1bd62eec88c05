import os
import platform
import shutil
from typing import List, Optional


def current_platform() -> str:
    return platform.system().lower()


def find_executable(configured: Optional[str], candidates: List[str]) -> Optional[str]:
    """Resolves an executable: explicit setting first, then PATH names and known install paths."""
    names = [configured] if configured else candidates
    for name in names:
        if not name:
            continue
        found = shutil.which(name)
        if found:
            return found
        if os.path.isfile(name) and os.access(name, os.X_OK):
            return name
    return None


def home_bin(*parts: str) -> str:
    return os.path.join(os.path.expanduser("~"), *parts)
