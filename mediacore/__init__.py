"""
mediacore: embeddable media engine runtime.

The package manages the life of engine instances: a reference counted
process-wide runtime, the staged initialisation of each instance with full
rollback on failure, and the single-instance protocol that lets a new launch
hand its targets to an engine that is already running.
"""

from __future__ import annotations

__version__ = "0.4.0"

from .errors import (  # noqa: E402
    ConfigError,
    DaemonizeError,
    IPCTransportError,
    MediaCoreError,
    ModuleLoadError,
    NotSupported,
    PlaylistInitError,
    ResourceError,
)
from .instance import EngineInstance  # noqa: E402
from .runtime import GlobalRuntimeState  # noqa: E402
from .runtime.lifecycle import InitResult, InstanceLifecycleManager  # noqa: E402
from .workitems import InsertMode, WorkItem, parse_targets  # noqa: E402

__all__ = [
    "ConfigError",
    "DaemonizeError",
    "EngineInstance",
    "GlobalRuntimeState",
    "IPCTransportError",
    "InitResult",
    "InsertMode",
    "InstanceLifecycleManager",
    "MediaCoreError",
    "ModuleLoadError",
    "NotSupported",
    "PlaylistInitError",
    "ResourceError",
    "WorkItem",
    "__version__",
    "parse_targets",
]
