import logging
import re
import threading
import uuid
from datetime import datetime

import pytest

from razboard.log_view import BufferedLogHandler, format_log_line, level_name


@pytest.fixture
def make_logger():
    created = []

    def factory(handler):
        logger = logging.getLogger(f"razboard-test-{uuid.uuid4()}")
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        logger.addHandler(handler)
        created.append((logger, handler))
        return logger

    yield factory
    for logger, handler in created:
        logger.removeHandler(handler)
        handler.close()


@pytest.mark.parametrize(
    "levelno, name",
    [
        (logging.DEBUG, "DEBUG"),
        (logging.INFO, "INFO"),
        (logging.WARNING, "WARN"),
        (logging.ERROR, "ERROR"),
    ],
)
def test_level_name(levelno, name):
    assert level_name(levelno) == name


def test_format_without_attrs():
    line = format_log_line(datetime(2024, 1, 2, 13, 4, 5), logging.INFO, "Received new event")
    assert line.startswith("[darkgray]13:04:05[-] [green] INFO [-] Received new event")
    assert line.endswith("\n")
    assert "|" not in line


def test_format_with_attrs_in_order():
    line = format_log_line(
        datetime(2024, 1, 2, 13, 4, 5),
        logging.ERROR,
        "failed",
        [("sequence_number", 3), ("error", "boom")],
    )
    assert "[red] ERROR [-] failed" in line
    assert line.rstrip("\n").endswith(
        " [darkgray]|[-] [cyan]sequence_number[-]=3, [cyan]error[-]=boom"
    )


def test_format_accepts_mapping():
    line = format_log_line(datetime(2024, 1, 2), logging.DEBUG, "m", {"topic_id": 2})
    assert "[gray] DEBUG [-]" in line
    assert "[cyan]topic_id[-]=2" in line


def test_handler_buffers_until_flush(make_logger):
    chunks = []
    handler = BufferedLogHandler(chunks.append, flush_interval=None)
    logger = make_logger(handler)
    logger.info("Commiting event", extra={"sequence_number": 4})
    assert chunks == []
    handler.flush()
    assert len(chunks) == 1
    assert "Commiting event" in chunks[0]
    assert "[cyan]sequence_number[-]=4" in chunks[0]
    handler.flush()
    assert len(chunks) == 1


def test_handler_attrs_come_first(make_logger):
    chunks = []
    handler = BufferedLogHandler(chunks.append, flush_interval=None, attrs={"node": "a"})
    logger = make_logger(handler)
    logger.warning("x", extra={"seq": 1})
    handler.flush()
    assert "[cyan]node[-]=a, [cyan]seq[-]=1" in chunks[0]
    assert "[yellow] WARN [-]" in chunks[0]


def test_handler_flushes_when_buffer_full(make_logger):
    chunks = []
    handler = BufferedLogHandler(chunks.append, flush_interval=None, max_buffer_len=1)
    logger = make_logger(handler)
    logger.info("first")
    logger.info("second")
    assert len(chunks) == 2
    assert "first" in chunks[0] and "second" in chunks[1]


def test_close_flushes_remaining():
    chunks = []
    handler = BufferedLogHandler(chunks.append, flush_interval=None)
    logger = logging.getLogger(f"razboard-test-{uuid.uuid4()}")
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    logger.error("last words")
    logger.removeHandler(handler)
    handler.close()
    assert len(chunks) == 1
    assert "last words" in chunks[0]


def test_background_flush(make_logger):
    arrived = threading.Event()
    chunks = []

    def sink(text):
        chunks.append(text)
        arrived.set()

    handler = BufferedLogHandler(sink, flush_interval=0.01)
    logger = make_logger(handler)
    logger.info("periodic")
    assert arrived.wait(2.0) is True
    written = "".join(chunks)
    match = re.fullmatch(
        r"\[darkgray\](\d{2}:\d{2}:\d{2})\[-\] \[green\] INFO \[-\] periodic\n", written
    )
    assert match is not None, written
    stamp = datetime.strptime(match.group(1), "%H:%M:%S")
    assert written == format_log_line(stamp, logging.INFO, "periodic")
    assert written.count("periodic") == 1