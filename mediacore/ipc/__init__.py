"""
Single-instance detection and work handoff.
"""

from __future__ import annotations

from .coordinator import (
    CoordinationOutcome,
    CoordinatorState,
    HandoffComplete,
    PrimaryHandler,
    SingleInstanceCoordinator,
)
from .protocol import CHANNEL_NAME, Ack, AddWorkItemRequest, ProbeReply
from .transport import ChannelClaim, MemoryBus, Transport, UnixSocketTransport

__all__ = [
    "Ack",
    "AddWorkItemRequest",
    "CHANNEL_NAME",
    "ChannelClaim",
    "CoordinationOutcome",
    "CoordinatorState",
    "HandoffComplete",
    "MemoryBus",
    "PrimaryHandler",
    "ProbeReply",
    "SingleInstanceCoordinator",
    "Transport",
    "UnixSocketTransport",
]
