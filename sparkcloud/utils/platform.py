"""Where sparkcloud keeps its config file, databases and firmware by default."""

from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "sparkcloud"


def _base_dir(windows_var: str, windows_default: str, xdg_var: str, xdg_default: str) -> Path:
    home = Path.home()
    if sys.platform == "win32":
        return Path(os.environ.get(windows_var) or home / "AppData" / windows_default)
    if sys.platform == "darwin":
        return home / "Library" / "Application Support"
    return Path(os.environ.get(xdg_var) or home / xdg_default)


def get_config_dir() -> Path:
    """Directory searched for ``config.yaml``; ``SPARKCLOUD_CONFIG_DIR`` overrides it."""
    override = os.environ.get("SPARKCLOUD_CONFIG_DIR")
    if override:
        return Path(override)
    return _base_dir("APPDATA", "Roaming", "XDG_CONFIG_HOME", ".config") / APP_DIR_NAME


def get_data_dir() -> Path:
    """Directory for the webhook and device databases and ``known_apps``.

    ``SPARKCLOUD_DATA_DIR`` overrides it.
    """
    override = os.environ.get("SPARKCLOUD_DATA_DIR")
    if override:
        return Path(override)
    return _base_dir("LOCALAPPDATA", "Local", "XDG_DATA_HOME", ".local/share") / APP_DIR_NAME
