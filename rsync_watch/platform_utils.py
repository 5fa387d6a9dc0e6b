"""
Cross-platform utilities for Rsync Watch.

Centralises all OS-detection logic so every other module can import
a single canonical set of helpers rather than scattering ``sys.platform``
checks throughout the codebase.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

APP_DIR_NAME = "rsync-watch"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the per-user application config directory.

    - Windows : ``%APPDATA%\\rsync-watch``
    - macOS   : ``~/Library/Application Support/rsync-watch``
    - Linux   : ``$XDG_CONFIG_HOME/rsync-watch`` (default ``~/.config``)

    The directory is not created; a missing directory simply means
    there is no user-level config file.
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    return Path(base) / APP_DIR_NAME
