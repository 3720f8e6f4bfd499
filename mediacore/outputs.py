"""
Output sinks and announcement handlers attached to an engine instance.

The media pipeline itself lives elsewhere; the instance only tracks the
handles so that cleanup can destroy them in the right order.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

LOG = logging.getLogger(__name__)

_ids = itertools.count(1)


class OutputType(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"
    STREAM = "stream"


@dataclass
class OutputSink:
    id: str
    type: OutputType
    params: Dict[str, str] = field(default_factory=dict)
    destroyed: bool = False

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        LOG.debug("Destroyed %s output %s", self.type.value, self.id)


class OutputFactory:
    def create(self, output_type: OutputType, **params: str) -> OutputSink:
        return OutputSink(id=f"{output_type.value}-{next(_ids)}", type=output_type, params=params)


@dataclass
class AnnounceHandler:
    """
    Announces stream sessions on the network (SAP style).
    """

    sessions: Dict[str, str] = field(default_factory=dict)
    destroyed: bool = False

    def announce(self, session_id: str, description: str) -> None:
        self.sessions[session_id] = description

    def withdraw(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    def destroy(self) -> None:
        for session_id in list(self.sessions):
            self.withdraw(session_id)
        self.destroyed = True
