"""
CPU capability detection.

The probe runs once per process (from :class:`~mediacore.runtime.state.GlobalRuntimeState`)
and produces an immutable :class:`CPUCapability` bitmask.  User toggles may
later clear bits but never add any.
"""

from __future__ import annotations

import platform
from enum import IntFlag
from pathlib import Path
from typing import Callable, Dict, Optional

CPUINFO_PATH = Path("/proc/cpuinfo")


class CPUCapability(IntFlag):
    NONE = 0
    FPU = 1 << 0
    MMX = 1 << 1
    THREEDNOW = 1 << 2
    MMXEXT = 1 << 3
    SSE = 1 << 4
    SSE2 = 1 << 5
    ALTIVEC = 1 << 6
    NEON = 1 << 7


CAPABILITY_LABELS: Dict[CPUCapability, str] = {
    CPUCapability.MMX: "MMX",
    CPUCapability.THREEDNOW: "3DNow!",
    CPUCapability.MMXEXT: "MMXEXT",
    CPUCapability.SSE: "SSE",
    CPUCapability.SSE2: "SSE2",
    CPUCapability.ALTIVEC: "AltiVec",
    CPUCapability.NEON: "NEON",
    CPUCapability.FPU: "FPU",
}

# Command line toggle -> capability it clears when switched off.
FEATURE_OPTIONS: Dict[str, CPUCapability] = {
    "fpu": CPUCapability.FPU,
    "mmx": CPUCapability.MMX,
    "3dn": CPUCapability.THREEDNOW,
    "mmxext": CPUCapability.MMXEXT,
    "sse": CPUCapability.SSE,
    "sse2": CPUCapability.SSE2,
    "altivec": CPUCapability.ALTIVEC,
}

_CPUINFO_FLAGS: Dict[str, CPUCapability] = {
    "fpu": CPUCapability.FPU,
    "mmx": CPUCapability.MMX,
    "3dnow": CPUCapability.THREEDNOW,
    "mmxext": CPUCapability.MMXEXT,
    "sse": CPUCapability.SSE,
    "sse2": CPUCapability.SSE2,
    "altivec": CPUCapability.ALTIVEC,
    "neon": CPUCapability.NEON,
    "asimd": CPUCapability.NEON,
}

_ARCH_DEFAULTS: Dict[str, CPUCapability] = {
    "x86_64": CPUCapability.FPU | CPUCapability.MMX | CPUCapability.SSE | CPUCapability.SSE2,
    "amd64": CPUCapability.FPU | CPUCapability.MMX | CPUCapability.SSE | CPUCapability.SSE2,
    "aarch64": CPUCapability.FPU | CPUCapability.NEON,
    "arm64": CPUCapability.FPU | CPUCapability.NEON,
    "ppc64le": CPUCapability.FPU | CPUCapability.ALTIVEC,
}


def _flags_from_cpuinfo(text: str) -> Optional[CPUCapability]:
    for line in text.splitlines():
        key, _, value = line.partition(":")
        if key.strip().lower() not in {"flags", "features"}:
            continue
        caps = CPUCapability.NONE
        for token in value.split():
            caps |= _CPUINFO_FLAGS.get(token.lower(), CPUCapability.NONE)
        return caps
    return None


def probe_capabilities(
    cpuinfo: Optional[Path] = None,
    machine: Optional[Callable[[], str]] = None,
) -> CPUCapability:
    """
    Detect what the host CPU supports.
    """

    source = cpuinfo if cpuinfo is not None else CPUINFO_PATH
    try:
        parsed = _flags_from_cpuinfo(source.read_text(encoding="utf-8", errors="replace"))
    except OSError:
        parsed = None
    if parsed is not None:
        return parsed | CPUCapability.FPU

    arch = (machine or platform.machine)().lower()
    return _ARCH_DEFAULTS.get(arch, CPUCapability.FPU)


def apply_feature_masks(caps: CPUCapability, enabled: Callable[[str], bool]) -> CPUCapability:
    """
    Clear every capability whose toggle ``enabled(option)`` reports as off.
    """

    for option, flag in FEATURE_OPTIONS.items():
        if not enabled(option):
            caps &= ~flag
    return caps


def describe(caps: CPUCapability) -> str:
    labels = [label for flag, label in CAPABILITY_LABELS.items() if caps & flag]
    return " ".join(labels)
