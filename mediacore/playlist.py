"""
Playlist service owned by an engine instance.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Union

from .errors import PlaylistInitError
from .outputs import OutputType
from .workitems import WorkItem

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .instance import EngineInstance
    from .modules.registry import ModuleHandle

LOG = logging.getLogger(__name__)

PLAYLIST_END = -1


class PlaylistStatus(str, Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass(frozen=True)
class PlaylistEntry:
    id: int
    item: WorkItem
    source: Optional[str] = None

    def to_dict(self) -> dict:
        payload = self.item.to_dict()
        payload["id"] = self.id
        payload["source"] = self.source
        return payload


PlaylistObserver = Callable[["PlaylistService", str], None]


class PlaylistService:
    """
    Ordered list of work items plus the playback cursor.

    Interfaces run on their own threads and call into the service
    concurrently, so every mutation happens under ``_lock`` and observers are
    notified after the lock is released.
    """

    def __init__(self, instance: "EngineInstance") -> None:
        self._instance = instance
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._entries: List[PlaylistEntry] = []
        self._current: Optional[int] = None
        self._status = PlaylistStatus.STOPPED
        self._discovery: Dict[str, "ModuleHandle"] = {}
        self._observer_counter = 0
        self._observers: Dict[int, PlaylistObserver] = {}
        self._destroyed = False

    @classmethod
    def create(cls, instance: "EngineInstance") -> "PlaylistService":
        if instance.registry is None:
            raise PlaylistInitError("playlist requires a loaded module registry")
        playlist = cls(instance)
        LOG.debug("Playlist created for instance '%s'", instance.name)
        return playlist

    # ------------------------------------------------------------------ properties

    @property
    def instance(self) -> "EngineInstance":
        return self._instance

    @property
    def status(self) -> PlaylistStatus:
        with self._lock:
            return self._status

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def items(self) -> List[PlaylistEntry]:
        with self._lock:
            return list(self._entries)

    def current(self) -> Optional[PlaylistEntry]:
        with self._lock:
            if self._current is None or not self._entries:
                return None
            return self._entries[self._current]

    def discovery_modules(self) -> List[str]:
        with self._lock:
            return list(self._discovery)

    # ------------------------------------------------------------------ observers

    def subscribe(self, callback: PlaylistObserver) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._observer_counter += 1
            token = self._observer_counter
            self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)

    def _notify(self, event: str) -> None:
        with self._lock:
            observers = dict(self._observers)
        for token, callback in observers.items():
            try:
                callback(self, event)
            except Exception:  # pragma: no cover - observer failures should not break playback
                LOG.exception("Playlist observer %s failed.", token)

    # ------------------------------------------------------------------ content

    def add_service_discovery(self, names: Union[str, Iterable[str]]) -> int:
        """
        Attach services discovery modules.  Unknown modules are logged.
        """

        if isinstance(names, str):
            names = [part for part in names.split(":")]
        registry = self._instance.registry
        started = 0
        for name in (part.strip() for part in names):
            if not name or name in self._discovery:
                continue
            handle = registry.need("services_discovery", name, self) if registry else None
            if handle is None:
                LOG.warning("No services discovery module named '%s'", name)
                continue
            starter = getattr(handle.obj, "start", None)
            if callable(starter):
                starter()
            with self._lock:
                self._discovery[name] = handle
            started += 1
        return started

    def add_target(
        self,
        item: WorkItem,
        *,
        position: int = PLAYLIST_END,
        source: Optional[str] = None,
    ) -> PlaylistEntry:
        """
        Insert ``item`` at ``position`` (default: the end).

        Items submitted in play mode start playing right away.
        """

        with self._lock:
            entry = PlaylistEntry(id=next(self._ids), item=item, source=source)
            if position == PLAYLIST_END or position >= len(self._entries):
                self._entries.append(entry)
                index = len(self._entries) - 1
            else:
                index = max(0, position)
                self._entries.insert(index, entry)
                if self._current is not None and self._current >= index:
                    self._current += 1
        LOG.debug("Added '%s' to the playlist (%d options)", item.reference, len(item.options))
        self._notify("item-added")
        if item.play:
            self.play(index=index)
        return entry

    def remove(self, entry_id: int) -> bool:
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.id != entry_id:
                    continue
                del self._entries[index]
                if self._current is not None:
                    if self._current == index:
                        self._current = None
                        self._status = PlaylistStatus.STOPPED
                    elif self._current > index:
                        self._current -= 1
                break
            else:
                return False
        self._notify("item-removed")
        return True

    # ------------------------------------------------------------------ transport

    def play(self, *, index: Optional[int] = None) -> bool:
        with self._lock:
            if not self._entries:
                LOG.debug("Nothing to play")
                return False
            if index is not None:
                self._current = max(0, min(index, len(self._entries) - 1))
            elif self._current is None:
                self._current = 0
            self._status = PlaylistStatus.PLAYING
        self._instance.ensure_outputs((OutputType.AUDIO, OutputType.VIDEO))
        self._notify("playing")
        return True

    def pause(self) -> None:
        with self._lock:
            if self._status is not PlaylistStatus.PLAYING:
                return
            self._status = PlaylistStatus.PAUSED
        self._notify("paused")

    def toggle(self) -> None:
        if self.status is PlaylistStatus.PLAYING:
            self.pause()
        else:
            self.play()

    def stop(self) -> None:
        with self._lock:
            if self._status is PlaylistStatus.STOPPED:
                return
            self._status = PlaylistStatus.STOPPED
        self._notify("stopped")

    def next(self) -> bool:
        with self._lock:
            if not self._entries:
                return False
            target = 0 if self._current is None else self._current + 1
            if target >= len(self._entries):
                self._status = PlaylistStatus.STOPPED
                self._current = None
                stopped = True
            else:
                stopped = False
        if stopped:
            self._notify("stopped")
            return False
        return self.play(index=target)

    def prev(self) -> bool:
        with self._lock:
            if not self._entries:
                return False
            target = 0 if self._current is None else max(0, self._current - 1)
        return self.play(index=target)

    # ------------------------------------------------------------------ teardown

    def destroy(self) -> None:
        if self._destroyed:
            return
        self.stop()
        registry = self._instance.registry
        with self._lock:
            handles = list(self._discovery.values())
            self._discovery.clear()
            self._entries.clear()
            self._current = None
            self._observers.clear()
            self._destroyed = True
        for handle in handles:
            stopper = getattr(handle.obj, "stop", None)
            if callable(stopper):
                stopper()
            if registry is not None:
                registry.unneed(handle)
        LOG.debug("Playlist destroyed")
