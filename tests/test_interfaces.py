"""Tests covering interface modules and their supervisor."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from mediacore.errors import NotSupported
from mediacore.interfaces import (
    DummyInterface,
    ScreensaverInterface,
    parse_options,
    split_interface_list,
)
from mediacore.playlist import PlaylistStatus
from mediacore.runtime.lifecycle import InitResult, InstanceLifecycleManager


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_split_interface_list_merges_and_deduplicates() -> None:
    assert split_interface_list("http:rc", None, "rc:telnet,none", "") == ["http", "rc", "telnet,none"]


def test_parse_options() -> None:
    assert parse_options(["logmode=syslog", ":interval=5", "flag", "=ignored"]) == {
        "logmode": "syslog",
        "interval": "5",
        "flag": "1",
    }


def test_dummy_interface_runs_until_stopped() -> None:
    interface = DummyInterface(SimpleNamespace(logger=logging.getLogger("tests.intf")))

    interface.start()
    assert wait_until(lambda: interface.running)
    interface.stop()

    assert interface.running is False
    assert interface.stopping is True


def test_screensaver_needs_a_command(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("shutil.which", lambda _name: None)
    instance = SimpleNamespace(logger=logging.getLogger("tests.intf"), playlist=None)

    with pytest.raises(NotSupported):
        ScreensaverInterface(instance)

    interface = ScreensaverInterface(instance, {"interval": "0.5"}, command="true")
    assert interface.interval == 0.5
    interface.reset()
    assert interface.resets == 1


def test_default_interfaces_follow_flags(manager: InstanceLifecycleManager, tmp_path: Path) -> None:
    log_path = tmp_path / "engine.log"
    instance = manager.create()

    result = manager.init(instance, ["--file-logging", "--logfile", str(log_path), "--show-intf"])

    assert result is InitResult.SUCCESS
    names = [interface.name for interface in instance.interfaces.interfaces]
    assert names == ["hotkeys", "logger", "showintf"]

    instance.logger.warning("written to the log file")
    manager.cleanup(instance)
    manager.destroy(instance)

    assert "written to the log file" in log_path.read_text(encoding="utf-8")


def test_screensaver_starts_only_with_a_display(
    manager: InstanceLifecycleManager, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DISPLAY", ":0")
    monkeypatch.setattr("shutil.which", lambda _name: "/bin/true")
    instance = manager.create()

    assert manager.init(instance, []) is InitResult.SUCCESS
    assert instance.interfaces.find("screensaver") is not None

    manager.cleanup(instance)
    manager.destroy(instance)


def test_extra_interfaces_are_started(manager: InstanceLifecycleManager) -> None:
    instance = manager.create()

    result = manager.init(instance, ["--extraintf", "dummy:missing", "--control", "dummy"])

    assert result is InitResult.SUCCESS
    names = [interface.name for interface in instance.interfaces.interfaces]
    assert names == ["dummy", "hotkeys"]
    manager.cleanup(instance)
    manager.destroy(instance)


def test_hotkeys_drive_the_playlist(manager: InstanceLifecycleManager) -> None:
    instance = manager.create()
    assert manager.init(instance, ["a.mp4", "b.mp4"]) is InitResult.SUCCESS
    hotkeys = instance.interfaces.find("hotkeys")

    hotkeys.handle_key("space")
    assert instance.playlist.status is PlaylistStatus.PLAYING
    hotkeys.handle_key("n")
    assert instance.playlist.current().item.reference == "b.mp4"
    hotkeys.handle_key("s")
    assert instance.playlist.status is PlaylistStatus.STOPPED

    assert instance.key_pressed("ctrl+q") is True
    assert instance.wait_for_quit(5.0) is True

    manager.cleanup(instance)
    manager.destroy(instance)


def test_add_interface_reports_failures(manager: InstanceLifecycleManager) -> None:
    instance = manager.create()
    assert manager.add_interface(instance, "dummy") is InitResult.GENERIC_FAILURE

    assert manager.init(instance, []) is InitResult.SUCCESS
    assert manager.add_interface(instance, "no-such-interface") is InitResult.GENERIC_FAILURE
    assert manager.add_interface(instance, "showintf") is InitResult.SUCCESS

    manager.cleanup(instance)
    manager.destroy(instance)


def test_blocking_interface_with_autoplay(manager: InstanceLifecycleManager) -> None:
    instance = manager.create()
    assert manager.init(instance, ["a.mp4"]) is InitResult.SUCCESS
    results = []

    runner = threading.Thread(
        target=lambda: results.append(manager.add_interface(instance, "dummy", blocking=True, autoplay=True))
    )
    runner.start()
    assert wait_until(lambda: instance.interfaces.find("dummy") is not None)
    assert instance.playlist.status is PlaylistStatus.PLAYING

    instance.request_quit()
    runner.join(5.0)

    assert results == [InitResult.SUCCESS]
    manager.cleanup(instance)
    manager.destroy(instance)


def test_daemon_without_main_interface_falls_back_to_dummy(manager: InstanceLifecycleManager) -> None:
    instance = manager.create()
    assert manager.init(instance, ["--daemon"]) is InitResult.SUCCESS
    assert instance.state.daemon is True

    runner = threading.Thread(target=manager.add_interface, args=(instance, None), kwargs={"blocking": True})
    runner.start()
    assert wait_until(lambda: instance.interfaces.find("dummy") is not None)
    instance.request_quit()
    runner.join(5.0)

    assert not runner.is_alive()
    manager.cleanup(instance)
    manager.destroy(instance)
