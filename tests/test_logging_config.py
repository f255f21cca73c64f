"""Tests for structured logging."""
import json
import logging
import sys

from app.logging_config import JSONFormatter


def test_json_formatter_includes_context():
    record = logging.LogRecord(
        name="services.payout_reservation",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="Payout request %s created",
        args=(7,),
        exc_info=None,
    )
    record.referrer_id = "alice"
    record.payout_id = 7

    data = json.loads(JSONFormatter().format(record))

    assert data["level"] == "INFO"
    assert data["logger"] == "services.payout_reservation"
    assert data["message"] == "Payout request 7 created"
    assert data["referrer_id"] == "alice"
    assert data["payout_id"] == 7
    assert "earning_id" not in data
    assert data["timestamp"].endswith("Z")


def test_json_formatter_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        exc_info = sys.exc_info()

    record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, exc_info)
    data = json.loads(JSONFormatter().format(record))

    assert "ValueError: boom" in data["exception"]
