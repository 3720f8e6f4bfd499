"""
Starts and stops the interface modules attached to an instance.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, List, Optional, Sequence

from .base import Interface, parse_options

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from ..instance import EngineInstance
    from ..modules.registry import ModuleHandle

LOG = logging.getLogger(__name__)

INTERFACE_CAPABILITY = "interface"
DAEMON_FALLBACK_INTERFACE = "dummy"


def split_interface_list(*values: Optional[str]) -> List[str]:
    """
    Merge colon separated interface lists, keeping the first occurrence.
    """

    merged: List[str] = []
    for value in values:
        for name in (value or "").split(":"):
            name = name.strip()
            if name and name not in merged:
                merged.append(name)
    return merged


class InterfaceSupervisor:
    """
    Ordered owner of the interfaces running for one instance.
    """

    def __init__(self, instance: "EngineInstance") -> None:
        self._instance = instance
        self._lock = threading.Lock()
        self._handles: List["ModuleHandle"] = []

    @property
    def interfaces(self) -> List[Interface]:
        with self._lock:
            return [handle.obj for handle in self._handles]

    def find(self, name: str) -> Optional[Interface]:
        for interface in self.interfaces:
            if interface.name == name:
                return interface
        return None

    def start(
        self,
        name: Optional[str],
        *,
        blocking: bool = False,
        autoplay: bool = False,
        options: Sequence[str] = (),
    ) -> bool:
        """
        Create the interface ``name`` and run it.

        ``None`` selects the configured main interface.  Returns ``False`` when
        the interface cannot be created or started; the failure is logged.
        """

        instance = self._instance
        registry = instance.registry
        if registry is None:
            LOG.error("Cannot start interface '%s' without a module registry", name)
            return False

        if instance.state.daemon and blocking and not name:
            if not instance.config.get_str("intf"):
                name = DAEMON_FALLBACK_INTERFACE

        constraint = name if name else "$intf"
        handle = registry.need(
            INTERFACE_CAPABILITY,
            constraint,
            instance,
            parse_options(options),
            config=instance.config,
            cpu=instance.cpu,
        )
        if handle is None:
            LOG.error("interface \"%s\" initialization failed", name or "default")
            return False

        interface: Interface = handle.obj
        if not interface.handles_play and autoplay and instance.playlist is not None:
            instance.playlist.play()
        interface.autoplay = autoplay
        interface.blocking = blocking

        with self._lock:
            self._handles.append(handle)

        if blocking:
            if instance.quit_requested:
                interface.stop()
            interface.run_blocking()
            return True

        try:
            interface.start()
        except RuntimeError:
            LOG.exception("Interface '%s' could not be started", handle.module.name)
            with self._lock:
                self._handles.remove(handle)
            registry.unneed(handle)
            return False
        LOG.debug("Interface '%s' started", handle.module.name)
        return True

    def stop_all(self) -> int:
        """
        Stop and release every interface, most recent first.
        """

        with self._lock:
            handles = list(reversed(self._handles))
            self._handles.clear()
        registry = self._instance.registry
        for handle in handles:
            handle.obj.stop()
            if registry is not None:
                registry.unneed(handle)
            else:
                handle.obj.close()
        return len(handles)
