"""
Default key bindings.

Each instance keeps its own copy of the table so bindings can be changed at
runtime without affecting other instances in the process.
"""

from __future__ import annotations

from typing import Dict, Optional

DEFAULT_HOTKEYS: Dict[str, str] = {
    "play-pause": "space",
    "stop": "s",
    "next": "n",
    "prev": "p",
    "faster": "+",
    "slower": "-",
    "fullscreen": "f",
    "quit": "ctrl+q",
    "vol-up": "ctrl+up",
    "vol-down": "ctrl+down",
    "vol-mute": "m",
}


def hotkey_snapshot() -> Dict[str, str]:
    return dict(DEFAULT_HOTKEYS)


def action_for_key(table: Dict[str, str], key: str) -> Optional[str]:
    wanted = key.strip().lower()
    for action, binding in table.items():
        if binding == wanted:
            return action
    return None
