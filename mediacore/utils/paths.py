"""
Filesystem locations used by an engine instance.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional

ENV_USER_DIR_VAR = "MEDIACORE_USER_DIR"
USER_DIR_NAME = ".mediacore"
CONFIG_FILE_NAME = "mediacore.yaml"


def home_dir() -> str:
    """
    Return the home directory of the current user.

    Falls back to the temporary directory when the environment carries no
    usable home (daemons started from init scripts, containers).
    """

    home = os.environ.get("HOME")
    if home:
        return home
    try:
        return str(Path.home())
    except RuntimeError:
        return tempfile.gettempdir()


def user_dir(home: Optional[str] = None) -> Optional[str]:
    """
    Return the per-user data directory, or ``None`` if it cannot be derived.
    """

    override = os.environ.get(ENV_USER_DIR_VAR)
    if override:
        return str(Path(override).expanduser())
    base = home if home is not None else home_dir()
    if not base:
        return None
    return str(Path(base) / USER_DIR_NAME)


def default_config_path(user_directory: str) -> str:
    return str(Path(user_directory) / CONFIG_FILE_NAME)


def expand_config_path(path: Optional[str], user_directory: str) -> Optional[str]:
    """
    Expand a leading ``~/`` against ``user_directory``.

    The ``~otheruser/`` form is left untouched.
    """

    if not path:
        return path
    if path.startswith("~/"):
        return f"{user_directory}/{path[2:]}"
    return path


def runtime_dir() -> Path:
    """
    Directory for per-session runtime artefacts such as IPC sockets.
    """

    xdg_runtime = os.environ.get("XDG_RUNTIME_DIR")
    if xdg_runtime and Path(xdg_runtime).is_dir():
        return Path(xdg_runtime)
    uid = os.getuid() if hasattr(os, "getuid") else 0
    return Path(tempfile.gettempdir()) / f"mediacore-{uid}"
