"""
The engine instance: everything one embedding owns.

An :class:`EngineInstance` is only a container.  Its fields are populated by
:class:`mediacore.runtime.lifecycle.InstanceLifecycleManager` across the
initialisation stages and released again by cleanup and destroy.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from .config import ConfigGate
from .modules.memcpy import PORTABLE_STRATEGY, Buffer, CopyStrategy
from .outputs import AnnounceHandler, OutputFactory, OutputSink, OutputType
from .runtime.cpu import CPUCapability
from .stats import TimerCollection
from .utils.logging import MessageQueue, level_for_verbosity

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .interfaces.supervisor import InterfaceSupervisor
    from .ipc.transport import ChannelClaim
    from .modules.registry import ModuleHandle, ModuleRegistry
    from .playlist import PlaylistService
    from .runtime.state import GlobalRuntimeState

LOG = logging.getLogger(__name__)

_instance_ids = itertools.count(1)


class EngineInstance:
    """
    One embeddable runtime instance.
    """

    def __init__(self, state: "GlobalRuntimeState", name: str = "mediacore") -> None:
        self.state = state
        self.name = name
        self.id = next(_instance_ids)
        self.verbose = 0
        self.color = False

        self.home_dir: Optional[str] = None
        self.user_dir: Optional[str] = None
        self.config_path: Optional[str] = None

        self.config = ConfigGate(prog=name)
        self.registry: Optional["ModuleRegistry"] = None
        self.cpu = CPUCapability.NONE
        self.copy_strategy: CopyStrategy = PORTABLE_STRATEGY
        self.copy_module: Optional["ModuleHandle"] = None
        self.hotkeys: Optional[Dict[str, str]] = None

        self.playlist: Optional["PlaylistService"] = None
        self.interfaces: Optional["InterfaceSupervisor"] = None
        self.output_factory = OutputFactory()
        self.outputs: List[OutputSink] = []
        self.announce_handlers: List[AnnounceHandler] = []
        self.timers = TimerCollection(enabled=False)
        self.ipc_claim: Optional["ChannelClaim"] = None
        self.pidfile: Optional[str] = None

        self.logger = logging.getLogger(f"mediacore.instance.{self.id}")
        self.messages: Optional[MessageQueue] = MessageQueue(self.logger)

        self.live = False
        self.cleaned = False
        self.destroyed = False

        self._lock = threading.RLock()
        self._quit = threading.Event()
        self._references = 1

    def __repr__(self) -> str:
        return f"EngineInstance(name={self.name!r}, id={self.id}, live={self.live})"

    # ------------------------------------------------------------------ verbosity

    def set_verbosity(self, verbose: int) -> None:
        self.verbose = verbose
        self.logger.setLevel(level_for_verbosity(verbose))

    def _on_config_change(self, name: str, _previous: object, value: object) -> None:
        if name == "verbose" and value is not None:
            self.set_verbosity(int(value))

    # ------------------------------------------------------------------ outputs

    def ensure_outputs(self, types: Iterable[OutputType]) -> List[OutputSink]:
        """
        Return an output sink for each of ``types``, creating missing ones.
        """

        sinks: List[OutputSink] = []
        with self._lock:
            for output_type in types:
                sink = next(
                    (s for s in self.outputs if s.type is output_type and not s.destroyed),
                    None,
                )
                if sink is None:
                    sink = self.output_factory.create(output_type)
                    self.outputs.append(sink)
                    self.logger.debug("Created %s output %s", output_type.value, sink.id)
                sinks.append(sink)
        return sinks

    def attach_announce_handler(self, handler: Optional[AnnounceHandler] = None) -> AnnounceHandler:
        handler = handler or AnnounceHandler()
        with self._lock:
            self.announce_handlers.append(handler)
        return handler

    # ------------------------------------------------------------------ runtime helpers

    def copy(self, dst: bytearray, src: Buffer, size: Optional[int] = None) -> int:
        """
        Copy bytes with the strategy selected during initialisation.
        """

        return self.copy_strategy(dst, src, size)

    def key_pressed(self, key: str) -> bool:
        """
        Forward a key press to the running hotkeys interface.
        """

        if self.interfaces is None:
            return False
        interface = self.interfaces.find("hotkeys")
        if interface is None:
            return False
        interface.press(key)
        return True

    def request_quit(self) -> None:
        self.logger.info("Quit requested")
        self._quit.set()
        if self.interfaces is not None:
            for interface in self.interfaces.interfaces:
                if interface.blocking:
                    interface.stop()

    @property
    def quit_requested(self) -> bool:
        return self._quit.is_set()

    def wait_for_quit(self, timeout: Optional[float] = None) -> bool:
        return self._quit.wait(timeout)

    # ------------------------------------------------------------------ references

    def hold(self) -> int:
        with self._lock:
            self._references += 1
            return self._references

    def release_reference(self) -> int:
        with self._lock:
            if self._references > 0:
                self._references -= 1
            return self._references

    @property
    def references(self) -> int:
        with self._lock:
            return self._references
