"""
Single-instance coordination.

During initialisation every launch tries to claim the well-known channel.  The
winner becomes the primary and answers handoff requests; a later launch in
one-instance mode probes the primary and, if it answers, hands its work items
over and terminates instead of starting a second engine.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

from pydantic import ValidationError

from ..errors import IPCTransportError
from ..workitems import WorkItem
from .protocol import CHANNEL_NAME, Ack, AddWorkItemRequest, ProbeReply
from .transport import ChannelClaim, Transport

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from ..instance import EngineInstance

LOG = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    PROBING = "probing"
    CLAIMED_PRIMARY = "claimed-primary"
    CLAIMED_SECONDARY_NO_PEER_CONTROL = "claimed-secondary-no-peer-control"
    CLAIMED_SECONDARY_HANDOFF = "claimed-secondary-handoff"
    DONE = "done"


class CoordinationOutcome(str, Enum):
    """How initialisation continues after coordination."""

    PRIMARY = "primary"
    INDEPENDENT = "independent"
    NO_PEER_CONTROL = "no-peer-control"


class HandoffComplete(Exception):
    """
    Raised once the work items were given to the primary instance.

    Initialisation unwinds everything it acquired and terminates the process;
    ``failed`` tells whether a send was aborted.
    """

    def __init__(self, delivered: int, failed: bool = False) -> None:
        super().__init__(f"handed over {delivered} item(s)" + (" before failing" if failed else ""))
        self.delivered = delivered
        self.failed = failed


class PrimaryHandler:
    """
    Channel handler registered by the primary instance.
    """

    def __init__(self, instance: "EngineInstance") -> None:
        self._instance = instance

    def probe(self) -> ProbeReply:
        # Handoffs are refused until the playlist exists and after it is gone.
        return ProbeReply(ok=self._instance.playlist is not None, pid=os.getpid())

    def add_work_item(self, request: AddWorkItemRequest) -> Ack:
        playlist = self._instance.playlist
        if playlist is None:
            return Ack(ok=False, error="playlist is not ready")
        entry = playlist.add_target(request.to_work_item(), source="handoff")
        self._instance.logger.info("Received '%s' from another instance", request.reference)
        return Ack(ok=True, item_id=entry.id)


class SingleInstanceCoordinator:
    """
    Drives the claim / probe / handoff sequence for one initialisation.
    """

    def __init__(self, transport: Transport, *, channel: str = CHANNEL_NAME) -> None:
        self.transport = transport
        self.channel = channel
        self.state = CoordinatorState.PROBING
        self.claim: Optional[ChannelClaim] = None

    def run(
        self,
        instance: "EngineInstance",
        items: Sequence[WorkItem],
        *,
        one_instance: bool,
        play: bool,
    ) -> CoordinationOutcome:
        """
        Claim the channel or hand ``items`` (left-to-right order) to its holder.

        Raises :class:`HandoffComplete` when the items went to another instance.
        """

        self.state = CoordinatorState.PROBING
        try:
            self.claim = self.transport.claim(self.channel, PrimaryHandler(instance))
        except IPCTransportError as exc:
            LOG.error("Failed to claim channel %s: %s", self.channel, exc)
            self.state = CoordinatorState.DONE
            return CoordinationOutcome.INDEPENDENT

        if self.claim is not None:
            self.state = CoordinatorState.CLAIMED_PRIMARY
            LOG.debug("We are the primary owner of %s", self.channel)
            self.state = CoordinatorState.DONE
            return CoordinationOutcome.PRIMARY

        if not one_instance:
            LOG.debug("%s is already claimed by another instance", self.channel)
            self.state = CoordinatorState.DONE
            return CoordinationOutcome.INDEPENDENT

        try:
            reply = self.transport.probe(self.channel)
            if not reply.ok:
                raise IPCTransportError(f"{self.channel} is not ready for handoffs")
        except IPCTransportError as exc:
            self.state = CoordinatorState.CLAIMED_SECONDARY_NO_PEER_CONTROL
            LOG.error(
                "one instance mode has been set but the running instance does not "
                "accept handoffs (%s). Enable its control channel or disable one instance mode.",
                exc,
            )
            self.state = CoordinatorState.DONE
            return CoordinationOutcome.NO_PEER_CONTROL

        self.state = CoordinatorState.CLAIMED_SECONDARY_HANDOFF
        LOG.warning("Another instance exists: will now exit")
        delivered = 0
        for item in items:
            LOG.debug("Give %s to the other instance", item.reference)
            try:
                request = AddWorkItemRequest.from_work_item(item, play=play)
                ack = self.transport.add_work_item(self.channel, request)
            except (IPCTransportError, ValidationError) as exc:
                LOG.error("Handoff of '%s' failed: %s", item.reference, exc)
                self.state = CoordinatorState.DONE
                raise HandoffComplete(delivered, failed=True) from exc
            if not ack.ok:
                LOG.error("The other instance refused '%s': %s", item.reference, ack.error)
                self.state = CoordinatorState.DONE
                raise HandoffComplete(delivered, failed=True)
            delivered += 1

        self.state = CoordinatorState.DONE
        raise HandoffComplete(delivered)
