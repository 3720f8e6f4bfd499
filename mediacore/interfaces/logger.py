"""
Writes the instance messages to a text file or to syslog.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from ..errors import NotSupported
from ..utils.logging import DEFAULT_FORMAT
from .base import Interface

FLUSH_INTERVAL_S = 0.5
DEFAULT_LOG_NAME = "mediacore-log.txt"


class LoggerInterface(Interface):
    name = "logger"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.mode = self.options.get("logmode") or self.instance.config.get_str("logmode") or "text"
        if self.mode not in {"text", "syslog"}:
            raise NotSupported(f"unknown log mode '{self.mode}'")
        self._handler: Optional[logging.Handler] = None
        self._token: Optional[int] = None

    def _open_handler(self) -> logging.Handler:
        if self.mode == "syslog":
            address = self.options.get("address", "/dev/log")
            handler: logging.Handler = logging.handlers.SysLogHandler(address=address)
            handler.setFormatter(logging.Formatter("mediacore: %(name)s: %(message)s"))
            return handler
        path = Path(self.instance.config.get_str("logfile") or self._default_path())
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        self.logger.info("Logging to %s", path)
        return handler

    def _default_path(self) -> str:
        return str(Path(self.instance.home_dir or ".") / DEFAULT_LOG_NAME)

    def run(self) -> None:
        try:
            self._handler = self._open_handler()
        except OSError as exc:
            self.logger.error("Cannot open the %s log: %s", self.mode, exc)
            return
        self._token = self.instance.messages.subscribe(self._handler.handle)
        while not self.wait(FLUSH_INTERVAL_S):
            self.instance.messages.flush()

    def on_exit(self) -> None:
        messages = self.instance.messages
        if self._token is not None and messages is not None:
            messages.flush()
            messages.unsubscribe(self._token)
        self._token = None
        if self._handler is not None:
            self._handler.close()
            self._handler = None
