"""
Detaching the process from its controlling terminal.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from ..errors import DaemonizeError

LOG = logging.getLogger(__name__)


def daemonize() -> None:
    """
    Double-fork into the background.

    Returns only in the detached grandchild.  The intermediate processes exit
    immediately with status 0.
    """

    if not hasattr(os, "fork"):
        raise DaemonizeError("this platform cannot fork")

    try:
        if os.fork() > 0:
            os._exit(0)
    except OSError as exc:
        raise DaemonizeError(f"unable to fork: {exc}") from exc

    try:
        os.setsid()
    except OSError as exc:
        raise DaemonizeError(f"unable to start a new session: {exc}") from exc

    try:
        if os.fork() > 0:
            os._exit(0)
    except OSError as exc:
        raise DaemonizeError(f"unable to fork a second time: {exc}") from exc

    os.chdir("/")
    _redirect_standard_streams()
    LOG.debug("Running in the background as pid %d", os.getpid())


def _redirect_standard_streams() -> None:
    sys.stdout.flush()
    sys.stderr.flush()
    null_fd = os.open(os.devnull, os.O_RDWR)
    try:
        for fd in (0, 1, 2):
            os.dup2(null_fd, fd)
    finally:
        if null_fd > 2:
            os.close(null_fd)


def write_pidfile(path: str, pid: Optional[int] = None) -> bool:
    """
    Store ``pid`` (default: the current process) in ``path``.

    Failures are logged and reported as ``False``; they never abort startup.
    """

    pid = os.getpid() if pid is None else pid
    try:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f"{pid}\n", encoding="ascii")
    except OSError as exc:
        LOG.error("cannot write PID file %s: %s", path, exc)
        return False
    LOG.debug("PID file %s written", path)
    return True


def remove_pidfile(path: str) -> None:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        LOG.warning("cannot remove PID file %s: %s", path, exc)
