"""
Services discovery modules feeding the playlist.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from .errors import NotSupported
from .workitems import InsertMode, WorkItem

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .playlist import PlaylistService

LOG = logging.getLogger(__name__)

MEDIA_SUFFIXES = frozenset(
    {".mp3", ".ogg", ".oga", ".flac", ".wav", ".m4a", ".opus", ".mp4", ".mkv", ".avi", ".webm", ".mov"}
)


class DirectoryDiscovery:
    """
    Adds the media files found under a directory to the playlist.
    """

    name = "directory"

    def __init__(self, playlist: "PlaylistService", directory: Optional[str]) -> None:
        if not directory:
            raise NotSupported("no directory configured for services discovery")
        self.playlist = playlist
        self.directory = Path(directory).expanduser()
        self.added: List[int] = []

    def scan(self) -> List[Path]:
        if not self.directory.is_dir():
            LOG.warning("Services discovery directory %s does not exist", self.directory)
            return []
        return sorted(
            path for path in self.directory.rglob("*") if path.is_file() and path.suffix.lower() in MEDIA_SUFFIXES
        )

    def start(self) -> None:
        for path in self.scan():
            entry = self.playlist.add_target(
                WorkItem(reference=path.resolve().as_uri(), mode=InsertMode.ENQUEUE),
                source=self.name,
            )
            self.added.append(entry.id)
        LOG.debug("Directory discovery added %d items from %s", len(self.added), self.directory)

    def stop(self) -> None:
        if self.playlist.destroyed:
            self.added.clear()
            return
        for entry_id in self.added:
            self.playlist.remove(entry_id)
        self.added.clear()
