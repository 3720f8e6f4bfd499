"""Tests covering the handoff protocol, its transports and the coordinator state machine."""

from __future__ import annotations

import logging
import socket
from pathlib import Path
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from mediacore.errors import IPCTransportError
from mediacore.ipc.coordinator import (
    CoordinationOutcome,
    CoordinatorState,
    HandoffComplete,
    PrimaryHandler,
    SingleInstanceCoordinator,
)
from mediacore.ipc.protocol import CHANNEL_NAME, Ack, AddWorkItemRequest, ProbeReply
from mediacore.ipc.server import create_handoff_app
from mediacore.ipc.transport import MemoryBus, UnixSocketTransport
from mediacore.workitems import InsertMode, WorkItem


class RecordingHandler:
    def __init__(self, refuse: Optional[str] = None) -> None:
        self.received: List[AddWorkItemRequest] = []
        self.refuse = refuse

    def probe(self) -> ProbeReply:
        return ProbeReply(pid=42)

    def add_work_item(self, request: AddWorkItemRequest) -> Ack:
        if request.reference == self.refuse:
            return Ack(ok=False, error="refused")
        self.received.append(request)
        return Ack(ok=True, item_id=len(self.received))


class ProbeFailsHandler(RecordingHandler):
    def probe(self) -> ProbeReply:
        raise RuntimeError("no control interface")


class FakeEntry:
    def __init__(self, entry_id: int) -> None:
        self.id = entry_id


class FakePlaylist:
    def __init__(self) -> None:
        self.items: List[WorkItem] = []

    def add_target(self, item: WorkItem, *, source=None) -> FakeEntry:
        self.items.append(item)
        return FakeEntry(len(self.items))


class FakeInstance:
    def __init__(self, playlist: Optional[FakePlaylist] = None) -> None:
        self.playlist = playlist
        self.logger = logging.getLogger("tests.ipc")


def items(*references: str) -> List[WorkItem]:
    return [WorkItem(reference=reference) for reference in references]


def test_request_requires_a_reference() -> None:
    with pytest.raises(ValidationError):
        AddWorkItemRequest(reference="  ")

    request = AddWorkItemRequest.from_work_item(WorkItem("a.mp4", [":x"]), play=False)
    item = request.to_work_item()
    assert item.options == [":x"]
    assert item.mode is InsertMode.ENQUEUE


def test_memory_bus_allows_one_holder() -> None:
    bus = MemoryBus()
    handler = RecordingHandler()

    claim = bus.claim("chan", handler)
    assert claim is not None
    assert bus.claim("chan", RecordingHandler()) is None
    assert bus.probe("chan").pid == 42

    claim.release()
    claim.release()
    assert bus.holder("chan") is None
    with pytest.raises(IPCTransportError):
        bus.probe("chan")


def test_http_app_serves_probe_and_work_items() -> None:
    handler = RecordingHandler(refuse="bad.mp4")
    client = TestClient(create_handoff_app(handler))

    probe = client.post("/probe")
    assert probe.status_code == 200
    assert probe.json()["pid"] == 42

    accepted = client.post("/work-items", json={"reference": "a.mp4", "options": [":x"], "play": True})
    assert Ack.model_validate(accepted.json()).ok is True
    refused = client.post("/work-items", json={"reference": "bad.mp4"})
    assert refused.json()["ok"] is False
    invalid = client.post("/work-items", json={"reference": ""})
    assert invalid.status_code == 422
    assert [request.reference for request in handler.received] == ["a.mp4"]


@pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="needs unix sockets")
def test_unix_socket_transport_round_trip(tmp_path: Path) -> None:
    transport = UnixSocketTransport(tmp_path / "run")
    handler = RecordingHandler()

    claim = transport.claim("test.chan", handler)
    try:
        assert claim is not None
        assert transport.claim("test.chan", RecordingHandler()) is None
        assert transport.probe("test.chan").pid == 42
        ack = transport.add_work_item("test.chan", AddWorkItemRequest(reference="a.mp4", play=False))
        assert ack.ok is True
        assert handler.received[0].play is False
    finally:
        if claim is not None:
            claim.release()

    assert not transport.address("test.chan").exists()
    with pytest.raises(IPCTransportError):
        transport.probe("test.chan")


@pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="needs unix sockets")
def test_unix_socket_transport_reclaims_stale_socket(tmp_path: Path) -> None:
    transport = UnixSocketTransport(tmp_path / "run")
    transport.directory.mkdir()
    stale = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    stale.bind(str(transport.address("stale.chan")))
    stale.close()

    claim = transport.claim("stale.chan", RecordingHandler())
    assert claim is not None
    claim.release()


def test_claiming_makes_the_instance_primary() -> None:
    bus = MemoryBus()
    playlist = FakePlaylist()
    coordinator = SingleInstanceCoordinator(bus)

    outcome = coordinator.run(FakeInstance(playlist), items("a"), one_instance=True, play=True)

    assert outcome is CoordinationOutcome.PRIMARY
    assert coordinator.state is CoordinatorState.DONE
    assert isinstance(bus.holder(CHANNEL_NAME), PrimaryHandler)
    assert bus.probe(CHANNEL_NAME).ok is True
    ack = bus.add_work_item(CHANNEL_NAME, AddWorkItemRequest(reference="remote.mp4"))
    assert ack.ok is True
    assert playlist.items[0].reference == "remote.mp4"
    assert playlist.items[0].play is True
    coordinator.claim.release()


def test_primary_without_playlist_refuses_items() -> None:
    handler = PrimaryHandler(FakeInstance(None))

    ack = handler.add_work_item(AddWorkItemRequest(reference="early.mp4"))

    assert ack.ok is False


def test_secondary_without_single_instance_mode_runs_independently() -> None:
    bus = MemoryBus()
    primary = RecordingHandler()
    bus.claim(CHANNEL_NAME, primary)
    coordinator = SingleInstanceCoordinator(bus)

    outcome = coordinator.run(FakeInstance(), items("a"), one_instance=False, play=True)

    assert outcome is CoordinationOutcome.INDEPENDENT
    assert coordinator.claim is None
    assert primary.received == []


def test_unreachable_holder_means_no_peer_control() -> None:
    bus = MemoryBus()
    holder = ProbeFailsHandler()
    bus.claim(CHANNEL_NAME, holder)
    coordinator = SingleInstanceCoordinator(bus)

    outcome = coordinator.run(FakeInstance(), items("a"), one_instance=True, play=True)

    assert outcome is CoordinationOutcome.NO_PEER_CONTROL
    assert holder.received == []


def test_handoff_sends_items_in_order_then_completes() -> None:
    bus = MemoryBus()
    primary = RecordingHandler()
    bus.claim(CHANNEL_NAME, primary)
    coordinator = SingleInstanceCoordinator(bus)

    with pytest.raises(HandoffComplete) as raised:
        coordinator.run(FakeInstance(), items("first", "second"), one_instance=True, play=False)

    assert raised.value.delivered == 2
    assert raised.value.failed is False
    assert [request.reference for request in primary.received] == ["first", "second"]
    assert all(request.play is False for request in primary.received)
    assert coordinator.state is CoordinatorState.DONE


def test_refused_item_aborts_the_remaining_sends() -> None:
    bus = MemoryBus()
    primary = RecordingHandler(refuse="second")
    bus.claim(CHANNEL_NAME, primary)

    with pytest.raises(HandoffComplete) as raised:
        SingleInstanceCoordinator(bus).run(
            FakeInstance(), items("first", "second", "third"), one_instance=True, play=True
        )

    assert raised.value.delivered == 1
    assert raised.value.failed is True
    assert [request.reference for request in primary.received] == ["first"]


def test_claim_failure_runs_independently() -> None:
    class BrokenTransport(MemoryBus):
        def claim(self, name, handler):
            raise IPCTransportError("no session bus")

    outcome = SingleInstanceCoordinator(BrokenTransport()).run(
        FakeInstance(), items("a"), one_instance=True, play=True
    )

    assert outcome is CoordinationOutcome.INDEPENDENT


class NotReadyHandler(RecordingHandler):
    def probe(self) -> ProbeReply:
        return ProbeReply(ok=False, pid=42)


def test_holder_that_is_not_ready_means_no_peer_control() -> None:
    bus = MemoryBus()
    holder = NotReadyHandler()
    bus.claim(CHANNEL_NAME, holder)
    coordinator = SingleInstanceCoordinator(bus)

    outcome = coordinator.run(FakeInstance(), items("a"), one_instance=True, play=True)

    assert outcome is CoordinationOutcome.NO_PEER_CONTROL
    assert coordinator.state is CoordinatorState.DONE
    assert holder.received == []


def test_primary_reports_readiness_from_its_playlist() -> None:
    assert PrimaryHandler(FakeInstance(None)).probe().ok is False
    assert PrimaryHandler(FakeInstance(FakePlaylist())).probe().ok is True


def test_blank_reference_aborts_the_handoff() -> None:
    bus = MemoryBus()
    primary = RecordingHandler()
    bus.claim(CHANNEL_NAME, primary)

    with pytest.raises(HandoffComplete) as raised:
        SingleInstanceCoordinator(bus).run(FakeInstance(), items(" ", "b"), one_instance=True, play=True)

    assert raised.value.delivered == 0
    assert raised.value.failed is True
    assert primary.received == []
