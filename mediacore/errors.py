"""
Error hierarchy shared by the runtime, the registry and the IPC layer.
"""

from __future__ import annotations


class MediaCoreError(RuntimeError):
    """Base class for runtime related errors."""


class ConfigError(MediaCoreError):
    """Raised when the command line or a configuration file cannot be applied."""


class ModuleLoadError(MediaCoreError):
    """Raised when the module bank cannot be initialised or a module fails to load."""


class ResourceError(MediaCoreError):
    """Raised when an instance or one of its owned resources cannot be allocated."""


class PlaylistInitError(MediaCoreError):
    """Raised when the playlist service cannot be constructed."""


class DaemonizeError(MediaCoreError):
    """Raised when detaching from the controlling terminal fails."""


class IPCTransportError(MediaCoreError):
    """Raised when a handoff channel cannot be reached or answers with an error."""


class NotSupported(MediaCoreError):
    """Raised when an optional capability has no provider.  Never fatal."""
