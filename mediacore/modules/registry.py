"""
Module bank and capability negotiation.

The bank is shared by every instance of the process and hangs off
:attr:`GlobalRuntimeState.module_bank`.  It is reference counted independently
from the global state: each instance calls :meth:`ModuleRegistry.init_bank`
during initialisation and :meth:`ModuleRegistry.end_bank` when it is destroyed.
"""

from __future__ import annotations

import importlib.util
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from importlib import metadata
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..config import ConfigGate, OptionSpec
from ..errors import ModuleLoadError, NotSupported
from ..runtime.cpu import CPUCapability
from ..runtime.state import GlobalRuntimeState

LOG = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "mediacore.modules"
ENV_PLUGIN_PATH_VAR = "MEDIACORE_PLUGIN_PATH"
CACHE_FILE_NAME = "plugins-cache.json"
CACHE_VERSION = 1

_TYPE_NAMES: Dict[str, type] = {"bool": bool, "int": int, "float": float, "str": str}


@dataclass
class ModuleDescriptor:
    """
    Static description of a module and how to activate it.

    ``factory`` receives the positional arguments handed to
    :meth:`ModuleRegistry.need` and returns the activated object.  It may raise
    :class:`NotSupported` to let the next candidate try.
    """

    name: str
    capability: str
    score: int = 0
    description: str = ""
    factory: Optional[Callable[..., Any]] = None
    shortcuts: Tuple[str, ...] = ()
    options: Tuple[OptionSpec, ...] = ()
    requires: CPUCapability = CPUCapability.NONE
    source: str = "builtin"
    usage: int = 0

    def matches(self, name: str) -> bool:
        return name == self.name or name in self.shortcuts

    def to_cache(self) -> dict:
        return {
            "name": self.name,
            "capability": self.capability,
            "score": int(self.score),
            "description": self.description,
            "shortcuts": list(self.shortcuts),
            "requires": int(self.requires),
            "options": [
                {
                    "name": spec.name,
                    "type": spec.type.__name__,
                    "default": spec.default,
                    "help": spec.help,
                    "advanced": spec.advanced,
                }
                for spec in self.options
            ],
        }


@dataclass
class ModuleHandle:
    """An activated module: its descriptor plus the object the factory returned."""

    module: ModuleDescriptor
    obj: Any


@dataclass
class ModuleBank:
    modules: Dict[str, ModuleDescriptor] = field(default_factory=dict)
    usage: int = 0
    cache_delete: bool = False
    builtins_loaded: bool = False
    plugins_loaded: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def add(self, descriptor: ModuleDescriptor) -> None:
        with self.lock:
            if descriptor.name in self.modules:
                LOG.debug("Module '%s' already registered, keeping the first one", descriptor.name)
                return
            self.modules[descriptor.name] = descriptor


def _lazy_factory(path: Path, name: str) -> Callable[..., Any]:
    def factory(*args: Any) -> Any:
        for descriptor in _load_plugin_file(path):
            if descriptor.name == name and descriptor.factory is not None:
                return descriptor.factory(*args)
        raise ModuleLoadError(f"plugin {path} no longer provides module '{name}'")

    return factory


def _normalise_exports(exported: Any, source: str) -> List[ModuleDescriptor]:
    if callable(exported) and not isinstance(exported, ModuleDescriptor):
        exported = exported()
    if isinstance(exported, ModuleDescriptor):
        exported = [exported]
    descriptors: List[ModuleDescriptor] = []
    for item in exported or ():
        if not isinstance(item, ModuleDescriptor):
            raise ModuleLoadError(f"{source} exported {item!r}, expected a ModuleDescriptor")
        item.source = source
        descriptors.append(item)
    return descriptors


def _load_plugin_file(path: Path) -> List[ModuleDescriptor]:
    module_name = f"mediacore_plugin_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ModuleLoadError(f"cannot import plugin {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise ModuleLoadError(f"plugin {path} failed to import: {exc}") from exc
    exported = getattr(module, "MODULES", None)
    if exported is None:
        exported = getattr(module, "register", None)
    if exported is None:
        raise ModuleLoadError(f"plugin {path} exports neither MODULES nor register()")
    return _normalise_exports(exported, str(path))


class ModuleRegistry:
    """
    Per-instance view onto the process-wide :class:`ModuleBank`.
    """

    def __init__(
        self,
        state: GlobalRuntimeState,
        *,
        builtins: Optional[Callable[[], Iterable[ModuleDescriptor]]] = None,
        entry_point_group: Optional[str] = ENTRY_POINT_GROUP,
    ) -> None:
        self._state = state
        self._builtins = builtins
        self._entry_point_group = entry_point_group
        self._holds_bank = False

    # ------------------------------------------------------------------ bank lifecycle

    @property
    def bank(self) -> ModuleBank:
        bank = self._state.module_bank
        if bank is None:
            raise ModuleLoadError("module bank is not initialised")
        return bank

    @property
    def holds_bank(self) -> bool:
        return self._holds_bank

    def init_bank(self) -> ModuleBank:
        if self._holds_bank:
            return self.bank
        bank = self._state.module_bank
        if bank is None:
            bank = ModuleBank()
            self._state.module_bank = bank
        with bank.lock:
            bank.usage += 1
        self._holds_bank = True
        return bank

    def end_bank(self) -> int:
        """
        Drop this registry's reference on the bank; unload it at zero.
        """

        if not self._holds_bank:
            return 0
        self._holds_bank = False
        bank = self._state.module_bank
        if bank is None:
            return 0
        with bank.lock:
            bank.usage -= 1
            remaining = bank.usage
            if remaining <= 0:
                LOG.debug("Unloading module bank (%d modules)", len(bank.modules))
                bank.modules.clear()
                bank.builtins_loaded = False
                bank.plugins_loaded = False
        if remaining <= 0:
            self._state.module_bank = None
        return max(0, remaining)

    def mark_cache_for_rebuild(self) -> None:
        self.bank.cache_delete = True

    # ------------------------------------------------------------------ loading

    def load_builtins(self) -> int:
        bank = self.bank
        with bank.lock:
            if bank.builtins_loaded:
                return 0
            if self._builtins is None:
                from .builtins import builtin_modules

                self._builtins = builtin_modules
            count = 0
            for descriptor in self._builtins():
                bank.add(descriptor)
                count += 1
            bank.builtins_loaded = True
        LOG.debug("Registered %d builtin modules", count)
        return count

    def load_plugins(self, plugin_path: Optional[str] = None, cache_dir: Optional[str] = None) -> int:
        """
        Discover dynamic modules from entry points and plugin directories.

        A module that fails to import is logged and skipped; only an unusable
        bank raises :class:`ModuleLoadError`.
        """

        bank = self.bank
        with bank.lock:
            if bank.plugins_loaded:
                return 0
            count = self._load_entry_points(bank)
            directories = self._plugin_directories(plugin_path)
            if directories:
                count += self._load_plugin_directories(bank, directories, cache_dir)
            bank.plugins_loaded = True
        LOG.debug("Registered %d dynamic modules", count)
        return count

    def _load_entry_points(self, bank: ModuleBank) -> int:
        if not self._entry_point_group:
            return 0
        count = 0
        for entry_point in metadata.entry_points(group=self._entry_point_group):
            try:
                descriptors = _normalise_exports(entry_point.load(), f"entry-point:{entry_point.name}")
            except Exception:
                LOG.exception("Failed to load module entry point '%s'", entry_point.name)
                continue
            for descriptor in descriptors:
                bank.add(descriptor)
                count += 1
        return count

    @staticmethod
    def _plugin_directories(plugin_path: Optional[str]) -> List[Path]:
        raw: List[str] = []
        for value in (plugin_path, os.environ.get(ENV_PLUGIN_PATH_VAR)):
            if value:
                raw.extend(part for part in value.split(os.pathsep) if part)
        return [Path(entry).expanduser() for entry in raw if Path(entry).expanduser().is_dir()]

    def _load_plugin_directories(self, bank: ModuleBank, directories: List[Path], cache_dir: Optional[str]) -> int:
        cache_path = Path(cache_dir) / CACHE_FILE_NAME if cache_dir else None
        cache = {} if bank.cache_delete else self._read_cache(cache_path)
        refreshed: Dict[str, dict] = {}
        count = 0
        for directory in directories:
            for path in sorted(directory.glob("*.py")):
                key = str(path.resolve())
                mtime = path.stat().st_mtime
                cached = cache.get(key)
                if cached and cached.get("mtime") == mtime:
                    descriptors = [self._descriptor_from_cache(path, entry) for entry in cached.get("modules", [])]
                else:
                    try:
                        descriptors = _load_plugin_file(path)
                    except ModuleLoadError:
                        LOG.exception("Skipping plugin %s", path)
                        continue
                refreshed[key] = {"mtime": mtime, "modules": [d.to_cache() for d in descriptors]}
                for descriptor in descriptors:
                    bank.add(descriptor)
                    count += 1
        if cache_path is not None:
            self._write_cache(cache_path, refreshed)
        bank.cache_delete = False
        return count

    @staticmethod
    def _descriptor_from_cache(path: Path, entry: dict) -> ModuleDescriptor:
        options = tuple(
            OptionSpec(
                name=option["name"],
                type=_TYPE_NAMES.get(option.get("type", "str"), str),
                default=option.get("default"),
                help=option.get("help", ""),
                module=entry["name"],
                advanced=bool(option.get("advanced", False)),
            )
            for option in entry.get("options", [])
        )
        return ModuleDescriptor(
            name=entry["name"],
            capability=entry["capability"],
            score=int(entry.get("score", 0)),
            description=entry.get("description", ""),
            factory=_lazy_factory(path, entry["name"]),
            shortcuts=tuple(entry.get("shortcuts", ())),
            options=options,
            requires=CPUCapability(int(entry.get("requires", 0))),
            source=str(path),
        )

    @staticmethod
    def _read_cache(cache_path: Optional[Path]) -> Dict[str, dict]:
        if cache_path is None:
            return {}
        try:
            with cache_path.open("r", encoding="utf-8") as handle:
                document = json.load(handle)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            LOG.warning("Plugin cache %s is unreadable, rebuilding it", cache_path)
            return {}
        if not isinstance(document, dict) or document.get("version") != CACHE_VERSION:
            return {}
        plugins = document.get("plugins")
        return plugins if isinstance(plugins, dict) else {}

    @staticmethod
    def _write_cache(cache_path: Path, plugins: Dict[str, dict]) -> None:
        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            with cache_path.open("w", encoding="utf-8") as handle:
                json.dump({"version": CACHE_VERSION, "plugins": plugins}, handle, sort_keys=True, default=str)
        except OSError as exc:
            LOG.warning("Cannot write plugin cache %s: %s", cache_path, exc)

    # ------------------------------------------------------------------ queries

    def modules(self, capability: Optional[str] = None) -> List[ModuleDescriptor]:
        bank = self.bank
        with bank.lock:
            found = list(bank.modules.values())
        if capability is not None:
            found = [module for module in found if module.capability == capability]
        return sorted(found, key=lambda module: (module.capability, -module.score, module.name))

    def find(self, name: str) -> Optional[ModuleDescriptor]:
        for module in self.modules():
            if module.matches(name):
                return module
        return None

    def register_options(self, config: ConfigGate) -> int:
        count = 0
        for module in self.modules():
            if module.options:
                config.register(module.options)
                count += len(module.options)
        return count

    def _candidates(self, capability: str, requested: str, cpu: CPUCapability) -> List[ModuleDescriptor]:
        eligible = [
            module
            for module in self.modules(capability)
            if (module.requires & cpu) == module.requires
        ]
        by_score = sorted(eligible, key=lambda module: -module.score)
        names = [part.strip() for part in requested.split(",") if part.strip()]
        if not names:
            return [module for module in by_score if module.score > 0]

        ordered: List[ModuleDescriptor] = []
        for name in names:
            if name == "none":
                break
            if name in {"any", "all"}:
                ordered.extend(module for module in by_score if module not in ordered)
                break
            match = next((module for module in eligible if module.matches(name)), None)
            if match is None:
                LOG.warning("No eligible %s module named '%s'", capability, name)
            elif match not in ordered:
                ordered.append(match)
        return ordered

    def need(
        self,
        capability: str,
        constraint: Optional[str] = None,
        *args: Any,
        config: Optional[ConfigGate] = None,
        cpu: CPUCapability = CPUCapability.NONE,
    ) -> Optional[ModuleHandle]:
        """
        Activate the best module providing ``capability``.

        ``constraint`` may name modules (``"a,b,none"``), or reference an option
        with ``"$option"``.  Returns ``None`` when no candidate activates.
        """

        requested = constraint or ""
        if requested.startswith("$"):
            requested = config.get_str(requested[1:]) if config is not None else ""

        for module in self._candidates(capability, requested.strip(), cpu):
            if module.factory is None:
                continue
            try:
                obj = module.factory(*args)
            except NotSupported as exc:
                LOG.debug("Module '%s' declined %s: %s", module.name, capability, exc)
                continue
            except Exception:
                LOG.exception("Module '%s' failed to activate", module.name)
                continue
            if obj is None:
                continue
            with self.bank.lock:
                module.usage += 1
            LOG.debug("Using %s module '%s'", capability, module.name)
            return ModuleHandle(module=module, obj=obj)
        return None

    def unneed(self, handle: ModuleHandle) -> None:
        closer = getattr(handle.obj, "close", None)
        if callable(closer):
            try:
                closer()
            except Exception:  # pragma: no cover - release must keep going
                LOG.exception("Module '%s' failed to close", handle.module.name)
        bank = self._state.module_bank
        if bank is None:
            return
        with bank.lock:
            handle.module.usage = max(0, handle.module.usage - 1)
