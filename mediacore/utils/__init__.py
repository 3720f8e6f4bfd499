"""Utility helpers for the runtime."""

from .logging import MessageQueue, configure_logging, level_for_verbosity
from .paths import expand_config_path, home_dir, user_dir

__all__ = [
    "MessageQueue",
    "configure_logging",
    "expand_config_path",
    "home_dir",
    "level_for_verbosity",
    "user_dir",
]
