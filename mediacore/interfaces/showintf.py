"""
Reports the current playlist item whenever playback changes.
"""

from __future__ import annotations

from typing import List, Optional

from .base import Interface


class ShowInterface(Interface):
    name = "showintf"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._token: Optional[int] = None
        self.shown: List[str] = []

    def run(self) -> None:
        playlist = self.instance.playlist
        if playlist is not None:
            self._token = playlist.subscribe(self._on_playlist_event)
        self._stop_event.wait()

    def on_exit(self) -> None:
        playlist = self.instance.playlist
        if playlist is not None and self._token is not None:
            playlist.unsubscribe(self._token)
        self._token = None

    def _on_playlist_event(self, playlist, event: str) -> None:
        if event != "playing":
            return
        entry = playlist.current()
        if entry is None:
            return
        self.shown.append(entry.item.reference)
        self.logger.info("Now playing: %s", entry.item.reference)
