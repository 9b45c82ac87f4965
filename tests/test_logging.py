"""
Structured logging tests.
"""
import json
import logging

from taskflow.shared.infrastructure.logging import CustomJsonFormatter, log_latency


def _format(**extra) -> dict:
    formatter = CustomJsonFormatter(fmt="%(name)s %(levelname)s %(message)s")
    formatter.environment = "staging"
    record = logging.LogRecord("taskflow.test", logging.INFO, __file__, 1, "Cron call", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


def test_json_record_fields():
    payload = _format(task_id="t1", correlation_id="abc")

    assert payload["message"] == "Cron call"
    assert payload["task_id"] == "t1"
    assert payload["correlation_id"] == "abc"
    assert payload["environment"] == "staging"
    assert "timestamp" in payload


def test_secrets_are_redacted():
    payload = _format(cron_secret="s3cret", authorization="Bearer s3cret", access_token="x", user_id="u1")

    assert payload["cron_secret"] == "***REDACTED***"
    assert payload["authorization"] == "***REDACTED***"
    assert payload["access_token"] == "***REDACTED***"
    assert payload["user_id"] == "u1"


def test_log_latency_reports_operation(caplog):
    logger = logging.getLogger("taskflow.test")

    with caplog.at_level(logging.INFO, logger="taskflow.test"):
        with log_latency(logger, "reminder_poll", batch=3):
            pass

    [record] = caplog.records
    assert record.getMessage() == "reminder_poll completed"
    assert record.operation == "reminder_poll"
    assert record.batch == 3
    assert record.latency_ms >= 0
