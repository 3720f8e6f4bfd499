"""
Handoff protocol between a secondary launch and the primary instance.

Two calls exist: ``probe`` checks that the holder of the channel accepts
handoffs and ``add_work_item`` gives it one item.  The models below are the
payloads exchanged by every transport.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..workitems import InsertMode, WorkItem

CHANNEL_NAME = "org.mediacore.primary"
PROTOCOL_VERSION = 1


class ProbeReply(BaseModel):
    ok: bool = True
    name: str = CHANNEL_NAME
    pid: Optional[int] = None
    version: int = PROTOCOL_VERSION


class AddWorkItemRequest(BaseModel):
    reference: str
    options: List[str] = Field(default_factory=list)
    play: bool = True

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("reference", mode="before")
    @classmethod
    def _require_reference(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("reference is required")
        return result

    @classmethod
    def from_work_item(cls, item: WorkItem, *, play: bool) -> "AddWorkItemRequest":
        return cls(reference=item.reference, options=list(item.options), play=play)

    def to_work_item(self) -> WorkItem:
        mode = InsertMode.PLAY if self.play else InsertMode.ENQUEUE
        return WorkItem(reference=self.reference, options=list(self.options), mode=mode)


class Ack(BaseModel):
    ok: bool = True
    error: Optional[str] = None
    item_id: Optional[int] = None


class HandoffHandler(Protocol):
    """What the primary instance answers on its channel."""

    def probe(self) -> ProbeReply:
        ...

    def add_work_item(self, request: AddWorkItemRequest) -> Ack:
        ...
