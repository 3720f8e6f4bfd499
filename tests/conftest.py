"""Shared fixtures: isolated environment, fresh runtime state and an in-memory channel bus."""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import List, Optional

import pytest

from mediacore.ipc.protocol import Ack, AddWorkItemRequest
from mediacore.ipc.transport import MemoryBus
from mediacore.runtime.cpu import CPUCapability
from mediacore.runtime.lifecycle import InstanceLifecycleManager
from mediacore.runtime.state import GlobalRuntimeState

TEST_CPU = CPUCapability.FPU | CPUCapability.MMX | CPUCapability.SSE | CPUCapability.SSE2


class RecordingBus(MemoryBus):
    def __init__(self) -> None:
        super().__init__()
        self.sent: List[AddWorkItemRequest] = []
        self.probes = 0

    def probe(self, name: str):
        self.probes += 1
        return super().probe(name)

    def add_work_item(self, name: str, request: AddWorkItemRequest) -> Ack:
        self.sent.append(request)
        return super().add_work_item(name, request)


class ExitRecorder:
    def __init__(self) -> None:
        self.codes: List[int] = []

    def __call__(self, code: int) -> None:
        self.codes.append(code)


class FakeDaemonizer:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.calls = 0
        self.error = error

    def __call__(self) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("MEDIACORE_USER_DIR", str(tmp_path / "user"))
    for name in ("DISPLAY", "WAYLAND_DISPLAY", "MEDIACORE_PLUGIN_PATH", "MEDIACORE_VERBOSE"):
        monkeypatch.delenv(name, raising=False)
    yield
    logging.getLogger("mediacore").setLevel(logging.NOTSET)


@pytest.fixture
def user_dir(tmp_path: Path) -> Path:
    return tmp_path / "user"


@pytest.fixture
def state() -> GlobalRuntimeState:
    return GlobalRuntimeState(probe=lambda: TEST_CPU)


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def exits() -> ExitRecorder:
    return ExitRecorder()


@pytest.fixture
def daemonizer() -> FakeDaemonizer:
    return FakeDaemonizer()


@pytest.fixture
def reports() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def manager(
    state: GlobalRuntimeState,
    bus: RecordingBus,
    exits: ExitRecorder,
    daemonizer: FakeDaemonizer,
    reports: io.StringIO,
) -> InstanceLifecycleManager:
    return InstanceLifecycleManager(
        state,
        transport=bus,
        daemonizer=daemonizer,
        exit_process=exits,
        report_stream=reports,
    )
