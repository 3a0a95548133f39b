"""
Tests for structured logging helpers.
"""
import json
import logging

import pytest

from helpdesk_sla.shared.infrastructure.logging import (
    ContextFilter,
    CustomJsonFormatter,
    bind_correlation_id,
    log_latency,
    reset_correlation_id,
)


def render(record):
    ContextFilter("test").filter(record)
    return json.loads(CustomJsonFormatter("%(name)s %(levelname)s %(message)s").format(record))


def make_record(msg="hello", **extra):
    record = logging.LogRecord("helpdesk_sla.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_correlation_id_comes_from_context():
    token = bind_correlation_id("req-42")
    try:
        body = render(make_record())
    finally:
        reset_correlation_id(token)

    assert body["correlation_id"] == "req-42"
    assert body["environment"] == "test"
    assert body["timestamp"]


def test_no_correlation_id_outside_requests():
    assert "correlation_id" not in render(make_record())


def test_credentials_are_redacted():
    body = render(make_record(api_key="sk-123", ticket_id="TICKET-001"))
    assert body["api_key"] == "***REDACTED***"
    assert body["ticket_id"] == "TICKET-001"


def test_log_latency_reports_failures(caplog):
    logger = logging.getLogger("helpdesk_sla.test")

    with caplog.at_level(logging.INFO, logger="helpdesk_sla.test"):
        with pytest.raises(RuntimeError):
            with log_latency(logger, "sla_sweep"):
                raise RuntimeError("boom")

    [record] = caplog.records
    assert record.levelno == logging.WARNING
    assert record.getMessage() == "sla_sweep failed"
    assert record.operation == "sla_sweep"
