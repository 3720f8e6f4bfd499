"""
Process-wide runtime state and the instance lifecycle.

The lifecycle manager lives in :mod:`mediacore.runtime.lifecycle` and is
imported from there directly.
"""

from __future__ import annotations

from .cpu import CPUCapability, probe_capabilities
from .state import GlobalRuntimeState, shared_state

__all__ = [
    "CPUCapability",
    "GlobalRuntimeState",
    "probe_capabilities",
    "shared_state",
]
