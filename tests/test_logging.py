"""Tests for structured logging helpers."""

import json
import logging

from helpdesk_triage.shared.infrastructure.logging import (
    CustomJsonFormatter,
    get_context_logger,
    log_latency,
)


def format_record(**extra) -> dict:
    formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="test")
    record = logging.LogRecord("triage", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


class TestCustomJsonFormatter:
    def test_adds_trace_and_environment(self):
        data = format_record(trace_id="abc123")

        assert data["trace_id"] == "abc123"
        assert data["environment"] == "test"
        assert data["message"] == "hello"
        assert "timestamp" in data

    def test_redacts_secrets_but_not_token_counts(self):
        data = format_record(api_key="sk-live", access_token="tok", prompt_tokens=120)

        assert data["api_key"] == "***REDACTED***"
        assert data["access_token"] == "***REDACTED***"
        assert data["prompt_tokens"] == 120


class TestContextLogger:
    def test_trace_id_bound_to_every_record(self, caplog):
        logger = get_context_logger("helpdesk_triage.tests", "trace-9")

        with caplog.at_level(logging.INFO, logger="helpdesk_triage.tests"):
            logger.info("step", extra={"ticket_id": "t1"})

        record = caplog.records[-1]
        assert record.trace_id == "trace-9"
        assert record.ticket_id == "t1"

    def test_log_latency_records_operation(self, caplog):
        logger = logging.getLogger("helpdesk_triage.tests")

        with caplog.at_level(logging.INFO, logger="helpdesk_triage.tests"):
            with log_latency(logger, "classification", ticket_id="t1"):
                pass

        record = caplog.records[-1]
        assert record.operation == "classification"
        assert record.latency_ms >= 0
        assert record.ticket_id == "t1"
