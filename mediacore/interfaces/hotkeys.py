"""
Hotkeys interface: translates key presses into playlist actions.
"""

from __future__ import annotations

import queue

from ..hotkeys import action_for_key
from .base import Interface

POLL_INTERVAL_S = 0.1


class HotkeysInterface(Interface):
    name = "hotkeys"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._keys: "queue.Queue[str]" = queue.Queue()

    def press(self, key: str) -> None:
        self._keys.put(key)

    def run(self) -> None:
        while not self.stopping:
            try:
                key = self._keys.get(timeout=POLL_INTERVAL_S)
            except queue.Empty:
                continue
            self.handle_key(key)

    def handle_key(self, key: str) -> None:
        action = action_for_key(self.instance.hotkeys, key)
        if action is None:
            self.logger.debug("No action bound to key '%s'", key)
            return
        playlist = self.instance.playlist
        if action == "quit":
            self.instance.request_quit()
            return
        if playlist is None:
            return
        if action == "play-pause":
            playlist.toggle()
        elif action == "stop":
            playlist.stop()
        elif action == "next":
            playlist.next()
        elif action == "prev":
            playlist.prev()
        else:
            self.logger.debug("Action '%s' needs an output, ignoring", action)
