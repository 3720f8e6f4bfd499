"""
Module bank, capability negotiation and builtin modules.
"""

from __future__ import annotations

from .memcpy import PORTABLE_STRATEGY, CopyStrategy
from .registry import ModuleBank, ModuleDescriptor, ModuleHandle, ModuleRegistry

__all__ = [
    "CopyStrategy",
    "ModuleBank",
    "ModuleDescriptor",
    "ModuleHandle",
    "ModuleRegistry",
    "PORTABLE_STRATEGY",
]
