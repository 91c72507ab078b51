import json
import logging

from idesk.shared.infrastructure.logging import (
    CustomJsonFormatter,
    get_context_logger,
    log_latency,
)


def format_record(formatter, **extra):
    record = logging.LogRecord("idesk.test", logging.INFO, __file__, 1, "SLA paused", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


def test_formatter_stamps_environment_and_correlation_id():
    formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="staging")

    payload = format_record(formatter, correlation_id="abc-123", ticket_id="42")

    assert payload["message"] == "SLA paused"
    assert payload["environment"] == "staging"
    assert payload["correlation_id"] == "abc-123"
    assert payload["ticket_id"] == "42"
    assert "timestamp" in payload


def test_formatter_redacts_sensitive_keys():
    formatter = CustomJsonFormatter("%(message)s")

    payload = format_record(formatter, db_password="hunter2", auth_token="t0k3n", ticket_id="42")

    assert payload["db_password"] == "***REDACTED***"
    assert payload["auth_token"] == "***REDACTED***"
    assert payload["ticket_id"] == "42"


def test_context_logger_merges_correlation_id_with_call_extra(caplog):
    adapter = get_context_logger("idesk.test.context", "abc-123")

    with caplog.at_level(logging.INFO, logger="idesk.test.context"):
        adapter.info("SLA paused", extra={"ticket_id": "42"})

    record = caplog.records[-1]
    assert record.correlation_id == "abc-123"
    assert record.ticket_id == "42"
    assert isinstance(get_context_logger("idesk.test"), logging.Logger)


def test_log_latency_logs_operation(caplog):
    logger = logging.getLogger("idesk.test.latency")

    with caplog.at_level(logging.INFO, logger="idesk.test.latency"):
        with log_latency(logger, "sla_evaluation", tickets=3):
            pass

    record = caplog.records[-1]
    assert record.getMessage() == "sla_evaluation completed"
    assert record.tickets == 3
    assert record.latency_ms >= 0
