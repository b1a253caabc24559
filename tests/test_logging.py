"""Tests for PayWatch logging setup."""

import io
import json
import logging

import pytest

from paywatch.core.logging import LOGGER_NAME, configure_logging, get_logger


@pytest.fixture
def stream():
    buffer = io.StringIO()
    yield buffer
    logging.getLogger(LOGGER_NAME).handlers.clear()


def test_json_lines_escape_messages(stream):
    configure_logging("INFO", json_format=True, stream=stream)

    get_logger("reconciler").info('Memo "paid" in full\nthanks')

    entry = json.loads(stream.getvalue())
    assert entry["level"] == "INFO"
    assert entry["logger"] == "paywatch.reconciler"
    assert entry["message"] == 'Memo "paid" in full\nthanks'


def test_json_lines_carry_payment_context(stream):
    configure_logging("DEBUG", json_format=True, stream=stream)

    get_logger("watcher").info(
        "Watching intent", extra={"intent_id": "pi_1", "asset": "XRP", "tx_hash": None}
    )

    entry = json.loads(stream.getvalue())
    assert entry["intent_id"] == "pi_1"
    assert entry["asset"] == "XRP"
    assert "tx_hash" not in entry


def test_exceptions_are_included(stream):
    configure_logging("INFO", json_format=True, stream=stream)

    try:
        raise RuntimeError("ledger unavailable")
    except RuntimeError:
        get_logger("watcher").exception("Final check failed")

    entry = json.loads(stream.getvalue())
    assert "RuntimeError: ledger unavailable" in entry["exception"]


def test_reconfiguring_replaces_handler(stream):
    configure_logging("INFO", stream=stream)
    logger = configure_logging("WARNING", stream=stream)

    assert len(logger.handlers) == 1
    assert logger.propagate is False

    get_logger("client").info("hidden")
    get_logger("client").warning("shown")

    assert "hidden" not in stream.getvalue()
    assert "WARNING [paywatch.client] shown" in stream.getvalue()
