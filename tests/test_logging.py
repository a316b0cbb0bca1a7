"""
tests/test_logging.py -- Request id propagation and token notification logging.
"""

from __future__ import annotations

import logging

from core.log import RequestIdFilter, request_id_var
from core.notifier import ACTIVATION, LogNotifier


def _record() -> logging.LogRecord:
    return logging.LogRecord("meetup.test", logging.INFO, __file__, 1, "hello", None, None)


def test_filter_defaults_to_dash_outside_a_request():
    record = _record()
    assert RequestIdFilter().filter(record) is True
    assert record.request_id == "-"


def test_filter_stamps_current_request_id():
    token = request_id_var.set("abc123")
    try:
        record = _record()
        RequestIdFilter().filter(record)
        assert record.request_id == "abc123"
    finally:
        request_id_var.reset(token)


def test_notifier_hides_token_outside_debug(caplog):
    with caplog.at_level(logging.INFO, logger="meetup.notifier"):
        LogNotifier(debug=False).send(ACTIVATION, "ada@example.com", "secret-token-value")
    assert "ada@example.com" in caplog.text
    assert "secret-token-value" not in caplog.text


def test_notifier_prints_token_in_debug(caplog):
    with caplog.at_level(logging.INFO, logger="meetup.notifier"):
        LogNotifier(debug=True).send(ACTIVATION, "ada@example.com", "secret-token-value")
    assert "secret-token-value" in caplog.text
