"""Known application binaries, stored as ``<name>.bin`` files."""

from __future__ import annotations

import re
from pathlib import Path

_APP_NAME_RE = re.compile(r"^[\w\-.]+$")


class FirmwareStore:
    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def get_by_name(self, app_name: str) -> bytes | None:
        # Names map to files, so reject anything that could leave the directory
        if not _APP_NAME_RE.match(app_name) or app_name.startswith("."):
            return None
        path = self._directory / f"{app_name}.bin"
        if not path.is_file():
            return None
        return path.read_bytes()

    def list_names(self) -> list[str]:
        if not self._directory.is_dir():
            return []
        return sorted(p.stem for p in self._directory.glob("*.bin"))
