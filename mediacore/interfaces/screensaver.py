"""
Keeps the desktop screensaver from starting while the playlist is playing.
"""

from __future__ import annotations

import shutil
import subprocess
from typing import Optional

from ..errors import NotSupported
from ..playlist import PlaylistStatus
from .base import Interface

RESET_INTERVAL_S = 30.0
SCREENSAVER_COMMAND = "xdg-screensaver"


class ScreensaverInterface(Interface):
    name = "screensaver"

    def __init__(self, *args, command: Optional[str] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.command = command or shutil.which(SCREENSAVER_COMMAND)
        if not self.command:
            raise NotSupported(f"{SCREENSAVER_COMMAND} is not installed")
        self.interval = float(self.options.get("interval", RESET_INTERVAL_S))
        self.resets = 0

    def run(self) -> None:
        while not self.wait(self.interval):
            playlist = self.instance.playlist
            if playlist is None or playlist.status is not PlaylistStatus.PLAYING:
                continue
            self.reset()

    def reset(self) -> None:
        try:
            subprocess.run([self.command, "reset"], check=False, timeout=5, capture_output=True)
        except (OSError, subprocess.SubprocessError) as exc:
            self.logger.warning("Screensaver reset failed: %s", exc)
            return
        self.resets += 1
