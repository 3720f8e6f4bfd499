"""Tests covering the module bank, plugin discovery and capability negotiation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mediacore.config import ConfigGate
from mediacore.errors import ModuleLoadError, NotSupported
from mediacore.modules.memcpy import PORTABLE_STRATEGY, memmove_copy, portable_copy
from mediacore.modules.registry import CACHE_FILE_NAME, ModuleDescriptor, ModuleRegistry
from mediacore.runtime.cpu import CPUCapability
from mediacore.runtime.state import GlobalRuntimeState

PLUGIN_SOURCE = '''
from mediacore.modules.registry import ModuleDescriptor


class Echo:
    def __init__(self, *args):
        self.args = args


MODULES = [
    ModuleDescriptor(name="echo", capability="test", score=5, description="echo plugin", factory=Echo),
]
'''


def make_registry(state: GlobalRuntimeState, *modules: ModuleDescriptor) -> ModuleRegistry:
    registry = ModuleRegistry(state, builtins=lambda: list(modules), entry_point_group=None)
    registry.init_bank()
    registry.load_builtins()
    return registry


def test_bank_is_shared_and_unloaded_with_the_last_user(state: GlobalRuntimeState) -> None:
    first = ModuleRegistry(state, entry_point_group=None)
    second = ModuleRegistry(state, entry_point_group=None)

    bank = first.init_bank()
    assert second.init_bank() is bank
    assert bank.usage == 2

    assert first.end_bank() == 1
    assert state.module_bank is bank
    assert second.end_bank() == 0
    assert state.module_bank is None
    assert second.end_bank() == 0


def test_bank_access_before_init_raises(state: GlobalRuntimeState) -> None:
    with pytest.raises(ModuleLoadError):
        ModuleRegistry(state).bank


def test_builtins_include_copy_strategy_and_interfaces(state: GlobalRuntimeState) -> None:
    registry = ModuleRegistry(state, entry_point_group=None)
    registry.init_bank()

    assert registry.load_builtins() > 0
    assert registry.load_builtins() == 0
    names = {module.name for module in registry.modules()}
    assert {"memmove", "dummy", "hotkeys", "logger", "directory"} <= names
    assert [module.name for module in registry.modules("memcpy")] == ["memmove"]

    config = ConfigGate()
    registry.register_options(config)
    assert config.spec("logmode").module == "logger"
    registry.end_bank()


def test_need_honours_cpu_requirements(state: GlobalRuntimeState) -> None:
    registry = ModuleRegistry(state, entry_point_group=None)
    registry.init_bank()
    registry.load_builtins()

    handle = registry.need("memcpy", cpu=CPUCapability.FPU)
    assert handle is not None
    assert handle.obj.name == "memmove"
    assert handle.module.usage == 1
    registry.unneed(handle)
    assert handle.module.usage == 0

    assert registry.need("memcpy", cpu=CPUCapability.NONE) is None
    registry.end_bank()


def test_need_orders_candidates(state: GlobalRuntimeState) -> None:
    registry = make_registry(
        state,
        ModuleDescriptor(name="low", capability="test", score=1, factory=lambda: "low"),
        ModuleDescriptor(name="high", capability="test", score=10, factory=lambda: "high"),
        ModuleDescriptor(name="manual", capability="test", score=0, factory=lambda: "manual", shortcuts=("m",)),
    )

    assert registry.need("test").obj == "high"
    assert registry.need("test", "low").obj == "low"
    assert registry.need("test", "m").obj == "manual"
    assert registry.need("test", "missing,low").obj == "low"
    assert registry.need("test", "missing,none") is None
    assert registry.need("test", "missing") is None
    assert registry.need("test", "missing,any").obj == "high"


def test_need_resolves_option_constraints(state: GlobalRuntimeState) -> None:
    registry = make_registry(
        state,
        ModuleDescriptor(name="one", capability="test", score=10, factory=lambda: "one"),
        ModuleDescriptor(name="two", capability="test", score=1, factory=lambda: "two"),
    )
    config = ConfigGate()

    assert registry.need("test", "$memcpy", config=config).obj == "one"
    config.set("memcpy", "two")
    assert registry.need("test", "$memcpy", config=config).obj == "two"


def test_need_skips_modules_that_decline(state: GlobalRuntimeState) -> None:
    def decline(*_args):
        raise NotSupported("not here")

    def broken(*_args):
        raise RuntimeError("boom")

    registry = make_registry(
        state,
        ModuleDescriptor(name="declines", capability="test", score=30, factory=decline),
        ModuleDescriptor(name="broken", capability="test", score=20, factory=broken),
        ModuleDescriptor(name="works", capability="test", score=10, factory=lambda *args: args),
    )

    handle = registry.need("test", None, "arg")
    assert handle.module.name == "works"
    assert handle.obj == ("arg",)


def test_plugins_are_loaded_from_directories_and_cached(state: GlobalRuntimeState, tmp_path: Path) -> None:
    plugins = tmp_path / "plugins"
    plugins.mkdir()
    (plugins / "echo.py").write_text(PLUGIN_SOURCE, encoding="utf-8")
    (plugins / "broken.py").write_text("raise ImportError('nope')\n", encoding="utf-8")
    cache_dir = tmp_path / "cache"

    registry = ModuleRegistry(state, builtins=list, entry_point_group=None)
    registry.init_bank()
    assert registry.load_plugins(str(plugins), cache_dir=str(cache_dir)) == 1

    handle = registry.need("test", "echo", 1, 2)
    assert handle.obj.args == (1, 2)
    cache = json.loads((cache_dir / CACHE_FILE_NAME).read_text(encoding="utf-8"))
    assert cache["version"] == 1
    [entry] = cache["plugins"].values()
    assert entry["modules"][0]["name"] == "echo"
    registry.end_bank()

    # A second bank is served from the cache and still activates lazily.
    registry = ModuleRegistry(state, builtins=list, entry_point_group=None)
    registry.init_bank()
    assert registry.load_plugins(str(plugins), cache_dir=str(cache_dir)) == 1
    module = registry.find("echo")
    assert module is not None
    assert module.source == str(plugins / "echo.py")
    assert registry.need("test", "echo", 3).obj.args == (3,)
    registry.end_bank()


def test_reset_plugins_cache_ignores_the_cache(state: GlobalRuntimeState, tmp_path: Path) -> None:
    plugins = tmp_path / "plugins"
    plugins.mkdir()
    (plugins / "echo.py").write_text(PLUGIN_SOURCE, encoding="utf-8")
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    stale = {"version": 1, "plugins": {str((plugins / "echo.py").resolve()): {"mtime": 0, "modules": []}}}
    (cache_dir / CACHE_FILE_NAME).write_text(json.dumps(stale), encoding="utf-8")

    registry = ModuleRegistry(state, builtins=list, entry_point_group=None)
    registry.init_bank()
    registry.mark_cache_for_rebuild()
    assert registry.load_plugins(str(plugins), cache_dir=str(cache_dir)) == 1
    assert registry.bank.cache_delete is False
    registry.end_bank()


def test_copy_strategies_copy_bytes() -> None:
    source = b"abcdefgh"
    for routine in (portable_copy, memmove_copy):
        target = bytearray(8)
        assert routine(target, source, 4) == 4
        assert bytes(target) == b"abcd\x00\x00\x00\x00"
        assert routine(target, bytearray(source)) == 8
        assert bytes(target) == source

    with pytest.raises(ValueError):
        PORTABLE_STRATEGY(bytearray(2), source, 4)
