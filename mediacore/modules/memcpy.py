"""
Data copy strategies.

An instance resolves its copy routine once, during initialisation, by asking
the registry for the ``memcpy`` capability.  When nothing is eligible the
portable routine is used.
"""

from __future__ import annotations

import ctypes
from dataclasses import dataclass
from typing import Callable, Optional, Union

from ..errors import NotSupported

Buffer = Union[bytes, bytearray, memoryview]
CopyRoutine = Callable[[bytearray, Buffer, Optional[int]], int]


def _copy_size(dst: bytearray, src: Buffer, size: Optional[int]) -> int:
    limit = min(len(dst), len(memoryview(src).cast("B")))
    if size is None:
        return limit
    if size < 0 or size > limit:
        raise ValueError(f"cannot copy {size} bytes between buffers of {len(dst)} and {limit} bytes")
    return size


def portable_copy(dst: bytearray, src: Buffer, size: Optional[int] = None) -> int:
    """
    Copy ``size`` bytes (default: as many as fit) from ``src`` into ``dst``.
    """

    count = _copy_size(dst, src, size)
    memoryview(dst)[:count] = memoryview(src).cast("B")[:count]
    return count


def memmove_copy(dst: bytearray, src: Buffer, size: Optional[int] = None) -> int:
    count = _copy_size(dst, src, size)
    if count == 0:
        return 0
    target = (ctypes.c_char * len(dst)).from_buffer(dst)
    if isinstance(src, bytes):
        source: object = src
    else:
        source = bytes(memoryview(src).cast("B")[:count])
    ctypes.memmove(ctypes.addressof(target), source, count)
    return count


@dataclass(frozen=True)
class CopyStrategy:
    name: str
    copy: CopyRoutine

    def __call__(self, dst: bytearray, src: Buffer, size: Optional[int] = None) -> int:
        return self.copy(dst, src, size)


PORTABLE_STRATEGY = CopyStrategy(name="portable", copy=portable_copy)


def open_memmove(*_args: object) -> CopyStrategy:
    if not hasattr(ctypes, "memmove"):  # pragma: no cover - every CPython ships it
        raise NotSupported("ctypes.memmove is unavailable")
    return CopyStrategy(name="memmove", copy=memmove_copy)
