from __future__ import annotations

import os
import sys
from pathlib import Path

from asyncrepo.config import APP_NAME


def _home() -> Path:
    return Path.home()


def get_app_config_dir() -> Path:
    """Return the per-user config directory (not created).

    macOS uses ``~/.config`` rather than ``~/Library/Application Support`` so
    dotfile setups are shared with Linux.
    """
    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA") or _home() / "AppData" / "Roaming")
        return (base / APP_NAME).resolve()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else (_home() / ".config")
    return (base / APP_NAME).resolve()


def get_app_cache_dir() -> Path:
    """Return a writable cache directory for logs, creating it if needed."""
    if sys.platform.startswith("win"):
        base = Path(os.environ.get("LOCALAPPDATA") or _home() / "AppData" / "Local")
    elif sys.platform == "darwin":
        base = _home() / "Library" / "Caches"
    else:
        xdg = os.environ.get("XDG_CACHE_HOME")
        base = Path(xdg) if xdg else (_home() / ".cache")
    path = (base / APP_NAME).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path
