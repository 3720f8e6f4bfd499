"""Tests covering verbosity mapping and the per-instance message queue."""

from __future__ import annotations

import logging
from typing import List

from mediacore.utils.logging import ColourFormatter, MessageQueue, level_for_verbosity


def test_verbosity_levels() -> None:
    assert level_for_verbosity(-1) == logging.ERROR
    assert level_for_verbosity(0) == logging.WARNING
    assert level_for_verbosity(1) == logging.INFO
    assert level_for_verbosity(2) == logging.DEBUG
    assert level_for_verbosity(5) == logging.DEBUG


def test_queue_delivers_on_flush_only() -> None:
    logger = logging.getLogger("tests.messages.flush")
    logger.setLevel(logging.DEBUG)
    queue = MessageQueue(logger)
    received: List[str] = []
    queue.subscribe(lambda record: received.append(record.getMessage()))

    logger.info("first %d", 1)
    logger.debug("second")
    assert received == []
    assert queue.pending() == 2

    queue.flush()
    assert received == ["first 1", "second"]
    assert queue.pending() == 0
    queue.close()


def test_queue_is_bounded() -> None:
    logger = logging.getLogger("tests.messages.bounded")
    logger.setLevel(logging.DEBUG)
    queue = MessageQueue(logger, maxlen=2)
    received: List[str] = []
    queue.subscribe(lambda record: received.append(record.getMessage()))

    for index in range(4):
        logger.info("message %d", index)
    queue.flush()

    assert received == ["message 2", "message 3"]
    queue.close()


def test_close_flushes_and_detaches() -> None:
    logger = logging.getLogger("tests.messages.close")
    logger.setLevel(logging.DEBUG)
    queue = MessageQueue(logger)
    received: List[str] = []
    token = queue.subscribe(lambda record: received.append(record.getMessage()))

    logger.warning("kept")
    queue.close()
    queue.close()
    logger.warning("dropped")

    assert received == ["kept"]
    assert queue.closed is True
    assert queue not in logger.handlers
    queue.unsubscribe(token)


def test_unsubscribed_consumers_receive_nothing() -> None:
    logger = logging.getLogger("tests.messages.unsubscribe")
    logger.setLevel(logging.DEBUG)
    queue = MessageQueue(logger)
    received: List[str] = []
    token = queue.subscribe(lambda record: received.append(record.getMessage()))
    queue.unsubscribe(token)

    logger.error("nobody listens")
    queue.flush()

    assert received == []
    queue.close()


def test_colour_formatter_wraps_message() -> None:
    record = logging.LogRecord("x", logging.ERROR, __file__, 1, "bad", None, None)

    text = ColourFormatter("%(message)s").format(record)

    assert text.startswith("\033[")
    assert "bad" in text
    assert text.endswith("\033[0m")
