"""
Work items: media references queued on a playlist or handed to another instance.
"""

from __future__ import annotations

import locale
import os
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence

OPTION_MARKER = ":"


class InsertMode(str, Enum):
    """Whether a submitted item starts playing or is only enqueued."""

    PLAY = "play"
    ENQUEUE = "enqueue"


@dataclass(frozen=True)
class WorkItem:
    reference: str
    options: List[str] = field(default_factory=list)
    mode: InsertMode = InsertMode.ENQUEUE

    @property
    def play(self) -> bool:
        return self.mode is InsertMode.PLAY

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "options": list(self.options),
            "mode": self.mode.value,
        }


def normalise_reference(token: str) -> str:
    """
    Return ``token`` as NFC normalised text.

    Command line arguments that the interpreter could not decode carry
    surrogate escapes; their raw bytes are decoded as UTF-8 first, then with
    the locale encoding.
    """

    raw = os.fsencode(token)
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        text = raw.decode(locale.getpreferredencoding(False) or "latin-1", errors="replace")
    return unicodedata.normalize("NFC", text)


def parse_targets(
    arguments: Sequence[str],
    *,
    mode: InsertMode = InsertMode.ENQUEUE,
    marker: str = OPTION_MARKER,
) -> List[WorkItem]:
    """
    Turn trailing command line arguments into work items.

    Arguments are scanned right to left.  Tokens starting with ``marker`` are
    options of the nearest target on their left.  The result lists the items
    in scan order (last target first); inserting each at the head of a
    playlist restores the left-to-right order.
    """

    items: List[WorkItem] = []
    index = len(arguments) - 1
    while index >= 0:
        option_count = 0
        while index > 0 and arguments[index].startswith(marker):
            option_count += 1
            index -= 1
        options = list(arguments[index + 1 : index + 1 + option_count])
        items.append(WorkItem(reference=normalise_reference(arguments[index]), options=options, mode=mode))
        index -= 1
    return items
