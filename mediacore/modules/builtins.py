"""
Modules compiled into the runtime.
"""

from __future__ import annotations

from typing import List

from ..config import OptionSpec
from ..discovery import DirectoryDiscovery
from ..interfaces import (
    DummyInterface,
    HotkeysInterface,
    LoggerInterface,
    ScreensaverInterface,
    ShowInterface,
)
from ..runtime.cpu import CPUCapability
from .memcpy import open_memmove
from .registry import ModuleDescriptor


def builtin_modules() -> List[ModuleDescriptor]:
    return [
        ModuleDescriptor(
            name="memmove",
            capability="memcpy",
            score=100,
            description="libc memmove data copy",
            factory=open_memmove,
            requires=CPUCapability.FPU,
        ),
        ModuleDescriptor(
            name="dummy",
            capability="interface",
            score=1,
            description="Dummy interface function",
            factory=DummyInterface,
        ),
        ModuleDescriptor(
            name="hotkeys",
            capability="interface",
            description="Hotkeys management interface",
            factory=HotkeysInterface,
        ),
        ModuleDescriptor(
            name="screensaver",
            capability="interface",
            description="Screensaver inhibition",
            factory=ScreensaverInterface,
        ),
        ModuleDescriptor(
            name="logger",
            capability="interface",
            description="File and syslog logging",
            factory=LoggerInterface,
            options=(
                OptionSpec("logmode", str, "text", "log format (text or syslog)", module="logger"),
            ),
        ),
        ModuleDescriptor(
            name="showintf",
            capability="interface",
            description="Reports the current item on change",
            factory=ShowInterface,
        ),
        ModuleDescriptor(
            name="directory",
            capability="services_discovery",
            description="Media files of a local directory",
            factory=lambda playlist: DirectoryDiscovery(
                playlist, playlist.instance.config.get_str("sd-directory")
            ),
            options=(
                OptionSpec("sd-directory", str, None, "directory scanned by the directory discovery", module="directory"),
            ),
        ),
    ]
