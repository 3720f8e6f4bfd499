"""
Interface that does nothing but keep the process alive.
"""

from __future__ import annotations

from .base import Interface


class DummyInterface(Interface):
    name = "dummy"

    def run(self) -> None:
        self.logger.info("Using the dummy interface module...")
        self._stop_event.wait()
