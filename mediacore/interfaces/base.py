"""
Base class for interface modules.

An interface runs on its own worker thread (or on the caller's thread when
started in blocking mode) until it is asked to stop.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Dict, Iterable, Optional

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from ..instance import EngineInstance

LOG = logging.getLogger(__name__)

JOIN_TIMEOUT_S = 5.0


def parse_options(options: Iterable[str]) -> Dict[str, str]:
    """
    Turn ``key=value`` strings into a mapping.  Bare keys map to ``"1"``.
    """

    parsed: Dict[str, str] = {}
    for option in options:
        key, sep, value = str(option).partition("=")
        key = key.strip().lstrip(":")
        if not key:
            continue
        parsed[key] = value.strip() if sep else "1"
    return parsed


class Interface:
    """
    Interface module skeleton.

    Subclasses implement :meth:`run`, which must return once :attr:`stopping`
    becomes true.  ``handles_play`` tells the supervisor whether the interface
    starts playback itself when autoplay is requested.
    """

    name = "interface"
    handles_play = False

    def __init__(self, instance: "EngineInstance", options: Optional[Dict[str, str]] = None) -> None:
        self.instance = instance
        self.options: Dict[str, str] = dict(options or {})
        self.autoplay = False
        self.blocking = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = instance.logger.getChild(f"intf.{self.name}")

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns ``True`` when asked to stop."""
        return self._stop_event.wait(timeout)

    def run(self) -> None:
        raise NotImplementedError

    def _run_guarded(self) -> None:
        try:
            self.run()
        except Exception:
            self.logger.exception("Interface '%s' crashed", self.name)
        finally:
            self.on_exit()

    def on_exit(self) -> None:
        """
        Release what :meth:`run` acquired.  Subclasses override when required.
        """

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run_guarded,
            name=f"intf-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def run_blocking(self) -> None:
        self._run_guarded()

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(JOIN_TIMEOUT_S)
        if thread.is_alive():
            LOG.warning("Interface '%s' did not stop within %.1fs", self.name, JOIN_TIMEOUT_S)

    def close(self) -> None:
        self.stop()
