"""
Interface modules and their supervisor.
"""

from __future__ import annotations

from .base import Interface, parse_options
from .dummy import DummyInterface
from .hotkeys import HotkeysInterface
from .logger import LoggerInterface
from .screensaver import ScreensaverInterface
from .showintf import ShowInterface
from .supervisor import InterfaceSupervisor, split_interface_list

__all__ = [
    "DummyInterface",
    "HotkeysInterface",
    "Interface",
    "InterfaceSupervisor",
    "LoggerInterface",
    "ScreensaverInterface",
    "ShowInterface",
    "parse_options",
    "split_interface_list",
]
