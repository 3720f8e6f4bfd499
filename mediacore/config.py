"""
Configuration gate: option declarations, command line and configuration file.

Values resolve with the precedence ``defaults < configuration file < command
line``.  Modules contribute their own :class:`OptionSpec` declarations once the
module bank is loaded, which is why the command line is parsed twice during
instance initialisation: leniently first, strictly once every module had a
chance to register its options.
"""

from __future__ import annotations

import argparse
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import yaml

from .errors import ConfigError

LOG = logging.getLogger(__name__)

MAIN_MODULE = "main"

ValueObserver = Callable[[str, Any, Any], None]


@dataclass(frozen=True)
class OptionSpec:
    """
    Declaration of a single configuration option.
    """

    name: str
    type: type
    default: Any = None
    help: str = ""
    module: str = MAIN_MODULE
    short: Optional[str] = None
    advanced: bool = False

    def coerce(self, value: Any) -> Any:
        if value is None:
            return None
        if self.type is bool:
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "on"}
            return bool(value)
        try:
            return self.type(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid value {value!r} for option '{self.name}'") from exc


MAIN_OPTIONS: List[OptionSpec] = [
    OptionSpec("help", bool, False, "print help for the main options", short="-h"),
    OptionSpec("longhelp", bool, False, "print help for every module", short="-H"),
    OptionSpec("version", bool, False, "print version information"),
    OptionSpec("list", bool, False, "list the available modules", short="-l"),
    OptionSpec("module", str, None, "print help for a single module", short="-p"),
    OptionSpec("advanced", bool, False, "show advanced options"),
    OptionSpec("config", str, None, "configuration file to use"),
    OptionSpec("reset-config", bool, False, "reset the configuration file to defaults"),
    OptionSpec("save-config", bool, False, "save the current options to the configuration file"),
    OptionSpec("reset-plugins-cache", bool, False, "rebuild the plugin cache"),
    OptionSpec("plugin-path", str, None, "additional directory searched for plugins", advanced=True),
    OptionSpec("daemon", bool, False, "run as a daemon process", short="-d"),
    OptionSpec("pidfile", str, None, "write the daemon PID to this file"),
    OptionSpec("one-instance", bool, False, "hand the targets to a running instance if there is one"),
    OptionSpec("playlist-enqueue", bool, False, "enqueue handed over targets instead of playing them"),
    OptionSpec("intf", str, None, "main interface module", short="-I"),
    OptionSpec("extraintf", str, None, "colon separated extra interface modules"),
    OptionSpec("control", str, None, "colon separated control interface modules"),
    OptionSpec("verbose", int, None, "verbosity level (-1 quiet, 0 errors, 1 info, 2 debug)"),
    OptionSpec("quiet", bool, False, "turn off all messages", short="-q"),
    OptionSpec("color", bool, True, "colour the messages on a terminal"),
    OptionSpec("stats", bool, False, "collect performance statistics"),
    OptionSpec("open", str, None, "default target to open"),
    OptionSpec("services-discovery", str, None, "colon separated services discovery modules"),
    OptionSpec("memcpy", str, None, "data copy strategy module", advanced=True),
    OptionSpec("disable-screensaver", bool, True, "keep the screensaver away while playing"),
    OptionSpec("file-logging", bool, False, "log messages to a file"),
    OptionSpec("logfile", str, None, "file used by the file logger"),
    OptionSpec("syslog", bool, False, "log messages to syslog"),
    OptionSpec("show-intf", bool, False, "report the current item on change"),
    OptionSpec("fpu", bool, True, "use the FPU", advanced=True),
    OptionSpec("mmx", bool, True, "use MMX optimisations", advanced=True),
    OptionSpec("3dn", bool, True, "use 3DNow! optimisations", advanced=True),
    OptionSpec("mmxext", bool, True, "use MMX EXT optimisations", advanced=True),
    OptionSpec("sse", bool, True, "use SSE optimisations", advanced=True),
    OptionSpec("sse2", bool, True, "use SSE2 optimisations", advanced=True),
    OptionSpec("altivec", bool, True, "use AltiVec optimisations", advanced=True),
]


class _Parser(argparse.ArgumentParser):
    """Argument parser that raises instead of exiting the process."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigError(message)

    def exit(self, status: int = 0, message: Optional[str] = None) -> None:  # type: ignore[override]
        raise ConfigError(message or f"argument parser exited with status {status}")


class ConfigGate:
    """
    Option store fed by declarations, a YAML configuration file and argv.
    """

    def __init__(self, options: Iterable[OptionSpec] = MAIN_OPTIONS, *, prog: str = "mediacore") -> None:
        self.prog = prog
        self.path: Optional[str] = None
        self.targets: List[str] = []
        self._lock = threading.RLock()
        self._specs: Dict[str, OptionSpec] = {}
        self._file_values: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}
        self._observer_counter = 0
        self._observers: Dict[int, ValueObserver] = {}
        self.register(options)

    # ------------------------------------------------------------------ declarations

    def register(self, options: Iterable[OptionSpec]) -> None:
        with self._lock:
            for spec in options:
                existing = self._specs.get(spec.name)
                if existing is not None and existing.module != spec.module:
                    LOG.warning(
                        "Option '%s' of module '%s' shadows the one from '%s'",
                        spec.name,
                        spec.module,
                        existing.module,
                    )
                self._specs[spec.name] = spec

    def unregister_module(self, module: str) -> None:
        with self._lock:
            for name in [n for n, spec in self._specs.items() if spec.module == module]:
                self._specs.pop(name, None)

    def spec(self, name: str) -> OptionSpec:
        with self._lock:
            try:
                return self._specs[name]
            except KeyError:
                raise ConfigError(f"unknown option '{name}'") from None

    def options(self, module: Optional[str] = None) -> List[OptionSpec]:
        with self._lock:
            specs = list(self._specs.values())
        if module is None:
            return specs
        return [spec for spec in specs if spec.module == module]

    def modules(self) -> List[str]:
        seen: Dict[str, None] = {}
        for spec in self.options():
            seen.setdefault(spec.module, None)
        return list(seen)

    # ------------------------------------------------------------------ values

    def get(self, name: str) -> Any:
        with self._lock:
            spec = self.spec(name)
            if name in self._overrides:
                return self._overrides[name]
            if name in self._file_values:
                return self._file_values[name]
            return spec.default

    def get_bool(self, name: str) -> bool:
        return bool(self.get(name))

    def get_str(self, name: str) -> str:
        value = self.get(name)
        return "" if value is None else str(value)

    def is_set(self, name: str) -> bool:
        with self._lock:
            return name in self._overrides or name in self._file_values

    def set(self, name: str, value: Any) -> None:
        """
        Change a value at runtime and notify the observers.
        """

        with self._lock:
            spec = self.spec(name)
            previous = self.get(name)
            coerced = spec.coerce(value)
            self._overrides[name] = coerced
            observers = dict(self._observers)
        for token, callback in observers.items():
            try:
                callback(name, previous, coerced)
            except Exception:  # pragma: no cover - observer failures should not break configuration
                LOG.exception("Configuration observer %s failed.", token)

    def watch(self, callback: ValueObserver) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._observer_counter += 1
            token = self._observer_counter
            self._observers[token] = callback
        return token

    def unwatch(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)

    # ------------------------------------------------------------------ command line

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = _Parser(prog=self.prog, add_help=False, allow_abbrev=False)
        for spec in self.options():
            flags = [f"--{spec.name}"]
            if spec.short:
                flags.insert(0, spec.short)
            kwargs: Dict[str, Any] = {"dest": spec.name, "default": argparse.SUPPRESS, "help": spec.help}
            if spec.type is bool:
                kwargs["action"] = argparse.BooleanOptionalAction
            else:
                kwargs["type"] = spec.type
                kwargs["metavar"] = spec.type.__name__.upper()
            parser.add_argument(*flags, **kwargs)
        parser.add_argument("-v", dest="verbose_count", action="count", default=argparse.SUPPRESS)
        parser.add_argument("targets", nargs="*", default=[])
        return parser

    def load_command_line(self, argv: Sequence[str], *, ignore_unknown: bool = False) -> Dict[str, Any]:
        """
        Parse ``argv`` (without the program name) into overrides.

        With ``ignore_unknown`` options that no registered module declares are
        skipped instead of raising :class:`ConfigError`.
        """

        parser = self._build_parser()
        args = list(argv)
        if ignore_unknown:
            namespace, unknown = parser.parse_known_intermixed_args(args)
            if unknown:
                LOG.debug("Ignoring not yet known options: %s", " ".join(unknown))
        else:
            namespace = parser.parse_intermixed_args(args)

        values = vars(namespace)
        targets = list(values.pop("targets", []) or [])
        verbose_count = values.pop("verbose_count", None)
        if verbose_count and "verbose" not in values:
            values["verbose"] = int(verbose_count)

        with self._lock:
            self._overrides = {name: self.spec(name).coerce(value) for name, value in values.items()}
            self.targets = targets
            return dict(self._overrides)

    # ------------------------------------------------------------------ configuration file

    def _require_path(self) -> Path:
        if not self.path:
            raise ConfigError("no configuration file path has been resolved")
        return Path(self.path)

    def load_config_file(self, name: Optional[str] = None) -> int:
        """
        Load the configuration file, or only its ``name`` section.

        Returns the number of values applied.  A missing file is not an error.
        """

        path = self._require_path()
        try:
            with path.open("r", encoding="utf-8") as handle:
                document = yaml.safe_load(handle) or {}
        except FileNotFoundError:
            LOG.debug("Configuration file %s does not exist yet", path)
            return 0
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot read configuration file {path}: {exc}") from exc

        if not isinstance(document, dict):
            raise ConfigError(f"configuration file {path} must contain a mapping")

        applied = 0
        with self._lock:
            for section, values in document.items():
                if name is not None and section != name:
                    continue
                if not isinstance(values, dict):
                    LOG.warning("Ignoring malformed section '%s' in %s", section, path)
                    continue
                for option, raw in values.items():
                    spec = self._specs.get(str(option))
                    if spec is None:
                        LOG.debug("Ignoring unknown option '%s' from %s", option, path)
                        continue
                    self._file_values[spec.name] = spec.coerce(raw)
                    applied += 1
        return applied

    def save(self, name: Optional[str] = None, *, merge: bool = True) -> Path:
        """
        Write the current values to the configuration file.

        Sections and values already in the file are kept unless ``merge`` is
        false, in which case the file is rewritten from scratch.
        """

        path = self._require_path()
        document = self._read_document(path) if merge else {}

        for spec in self.options():
            if name is not None and spec.module != name:
                continue
            if spec.name in _TRANSIENT_OPTIONS:
                continue
            value = self.get(spec.name)
            if value is None:
                continue
            document.setdefault(spec.module, {})[spec.name] = value

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(document, handle, sort_keys=True, default_flow_style=False)
        except OSError as exc:
            raise ConfigError(f"cannot write configuration file {path}: {exc}") from exc
        LOG.info("Configuration saved to %s", path)
        return path

    @staticmethod
    def _read_document(path: Path) -> Dict[str, Dict[str, Any]]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                existing = yaml.safe_load(handle) or {}
        except FileNotFoundError:
            return {}
        except (OSError, yaml.YAMLError) as exc:
            LOG.warning("Overwriting unreadable configuration file %s: %s", path, exc)
            return {}
        if not isinstance(existing, dict):
            return {}
        return {str(k): dict(v) for k, v in existing.items() if isinstance(v, dict)}

    def reset_all(self) -> None:
        with self._lock:
            self._file_values.clear()
            self._overrides.clear()


# Options describing what to do on this run rather than persistent preferences.
_TRANSIENT_OPTIONS = frozenset(
    {
        "help",
        "longhelp",
        "version",
        "list",
        "module",
        "config",
        "reset-config",
        "save-config",
        "reset-plugins-cache",
        "daemon",
        "pidfile",
        "open",
    }
)
