"""
Informational reports printed for ``--help``, ``--longhelp``, ``--module``,
``--list`` and ``--version``.
"""

from __future__ import annotations

import platform
import shutil
import textwrap
from typing import IO, Iterable, List, Optional

from . import __version__
from .config import MAIN_MODULE, ConfigGate, OptionSpec
from .modules.registry import ModuleRegistry

DEFAULT_WIDTH = 80
OPTION_COLUMN = 28


def _width() -> int:
    return max(40, shutil.get_terminal_size((DEFAULT_WIDTH, 24)).columns)


def _format_option(spec: OptionSpec, width: int) -> List[str]:
    flag = f"--{spec.name}"
    if spec.type is bool:
        flag = f"--{spec.name}, --no-{spec.name}"
    else:
        flag = f"{flag} <{spec.type.__name__}>"
    if spec.short:
        flag = f"{spec.short}, {flag}"
    text = spec.help or ""
    if spec.default not in (None, False, ""):
        text = f"{text} (default: {spec.default})".strip()
    head = f"  {flag}"
    body = textwrap.wrap(text, width=max(20, width - OPTION_COLUMN)) or [""]
    if len(head) >= OPTION_COLUMN:
        lines = [head]
    else:
        lines = [head.ljust(OPTION_COLUMN) + body.pop(0)]
    lines.extend(" " * OPTION_COLUMN + line for line in body)
    return lines


def usage(prog: str) -> str:
    return f"Usage: {prog} [options] [target [:option ...]] ..."


def _module_section(
    title: str,
    options: Iterable[OptionSpec],
    *,
    advanced: bool,
    width: int,
) -> List[str]:
    shown = [spec for spec in options if advanced or not spec.advanced]
    if not shown:
        return []
    lines = ["", f" {title}"]
    for spec in shown:
        lines.extend(_format_option(spec, width))
    return lines


def help_report(config: ConfigGate, *, advanced: bool = False, width: Optional[int] = None) -> str:
    width = width or _width()
    lines = [usage(config.prog)]
    lines.extend(_module_section("Main options", config.options(MAIN_MODULE), advanced=advanced, width=width))
    lines.append("")
    lines.append("Use --longhelp to show the options of every module.")
    return "\n".join(lines) + "\n"


def long_help_report(
    config: ConfigGate,
    registry: ModuleRegistry,
    *,
    advanced: bool = False,
    width: Optional[int] = None,
) -> str:
    width = width or _width()
    lines = [usage(config.prog)]
    lines.extend(_module_section("Main options", config.options(MAIN_MODULE), advanced=advanced, width=width))
    for module in registry.modules():
        title = f"{module.description or module.name} ({module.name})"
        lines.extend(_module_section(title, module.options, advanced=advanced, width=width))
    return "\n".join(lines) + "\n"


def module_help_report(
    config: ConfigGate,
    registry: ModuleRegistry,
    name: str,
    *,
    advanced: bool = False,
    width: Optional[int] = None,
) -> str:
    width = width or _width()
    module = registry.find(name)
    if module is None:
        return f"No module named '{name}'.\n"
    lines = [f"{module.name}: {module.description or 'no description'}"]
    section = _module_section("Options", module.options, advanced=advanced, width=width)
    lines.extend(section or ["", " This module has no options."])
    return "\n".join(lines) + "\n"


def list_report(registry: ModuleRegistry, *, verbose: bool = False) -> str:
    modules = registry.modules()
    if not modules:
        return "No modules are loaded.\n"
    name_width = max(len(module.name) for module in modules) + 2
    lines = []
    for module in modules:
        line = f"  {module.name.ljust(name_width)}{module.description}"
        if verbose:
            line = f"{line} [{module.capability}, score {module.score}, {module.source}]"
        lines.append(line)
    return "\n".join(lines) + "\n"


def version_report() -> str:
    return (
        f"mediacore {__version__}\n"
        f"Python {platform.python_version()} on {platform.system() or 'unknown'} {platform.machine()}\n"
    )


def write_report(stream: IO[str], text: str) -> None:
    stream.write(text)
    stream.flush()
