"""
Logging helpers for the runtime.

Centralising log configuration keeps the rest of the modules focused on their
domain logic.  Each engine instance additionally owns a :class:`MessageQueue`
which buffers the records emitted on its logger until they are flushed to the
subscribed consumers (file logger, syslog, ...).
"""

from __future__ import annotations

import logging
import sys
import threading
from collections import deque
from typing import Callable, Deque, Dict, Optional

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
DEFAULT_QUEUE_SIZE = 500

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[0;37m",
    logging.INFO: "\033[0;32m",
    logging.WARNING: "\033[0;33m",
    logging.ERROR: "\033[0;31m",
    logging.CRITICAL: "\033[1;31m",
}
_RESET = "\033[0m"

MessageCallback = Callable[[logging.LogRecord], None]


def level_for_verbosity(verbose: int) -> int:
    """
    Map the numeric verbosity used on the command line to a logging level.

    ``-1`` (quiet) only shows errors, ``0`` adds warnings, ``1`` informational
    messages and anything above turns on debug output.
    """

    if verbose < 0:
        return logging.ERROR
    if verbose == 0:
        return logging.WARNING
    if verbose == 1:
        return logging.INFO
    return logging.DEBUG


class ColourFormatter(logging.Formatter):
    """Wrap the formatted record in an ANSI colour."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        colour = _LEVEL_COLOURS.get(record.levelno)
        if not colour:
            return message
        return f"{colour}{message}{_RESET}"


def configure_logging(
    level: int = logging.INFO,
    format: Optional[str] = None,
    color: bool = False,
) -> None:
    """
    Ensure the root logger is configured exactly once.
    """

    if logging.getLogger().handlers:
        # Respect any user provided configuration.
        return

    handler = logging.StreamHandler(sys.stderr)
    formatter_cls = ColourFormatter if color else logging.Formatter
    handler.setFormatter(formatter_cls(format or DEFAULT_FORMAT))
    logging.basicConfig(level=level, handlers=[handler])


class MessageQueue(logging.Handler):
    """
    Per-instance diagnostic sink.

    Records are queued as they are emitted and delivered to subscribers on
    :meth:`flush`.  The queue is bounded; the oldest records are dropped first.
    """

    def __init__(self, logger: logging.Logger, *, maxlen: int = DEFAULT_QUEUE_SIZE) -> None:
        super().__init__(level=logging.DEBUG)
        self._logger = logger
        self._pending: Deque[logging.LogRecord] = deque(maxlen=maxlen)
        self._subscriber_counter = 0
        self._subscribers: Dict[int, MessageCallback] = {}
        self._queue_lock = threading.RLock()
        self._closed = False
        logger.addHandler(self)

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, record: logging.LogRecord) -> None:
        with self._queue_lock:
            if self._closed:
                return
            self._pending.append(record)

    def subscribe(self, callback: MessageCallback) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._queue_lock:
            self._subscriber_counter += 1
            token = self._subscriber_counter
            self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        with self._queue_lock:
            self._subscribers.pop(token, None)

    def pending(self) -> int:
        with self._queue_lock:
            return len(self._pending)

    def flush(self) -> None:
        with self._queue_lock:
            records = list(self._pending)
            self._pending.clear()
            subscribers = dict(self._subscribers)
        if not subscribers:
            return
        for record in records:
            for token, callback in subscribers.items():
                try:
                    callback(record)
                except Exception:  # pragma: no cover - a broken consumer must not stop delivery
                    logging.getLogger(__name__).exception("Message subscriber %s failed.", token)

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        with self._queue_lock:
            self._closed = True
            self._subscribers.clear()
            self._pending.clear()
        self._logger.removeHandler(self)
        super().close()
