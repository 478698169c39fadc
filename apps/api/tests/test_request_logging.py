"""Tests for request-scoped log context."""
import json
import logging

from core.logging import (
    JSONFormatter,
    RequestContextFilter,
    bind_athlete,
    bind_request_context,
    current_request_context,
    reset_request_context,
)


def _record(message="hello"):
    record = logging.LogRecord("kickstart.test", logging.INFO, __file__, 1, message, None, None)
    RequestContextFilter().filter(record)
    return record


def test_json_log_carries_request_and_athlete():
    token = bind_request_context("req-123")
    try:
        bind_athlete(42)
        payload = json.loads(JSONFormatter().format(_record()))
    finally:
        reset_request_context(token)

    assert payload["request_id"] == "req-123"
    assert payload["athlete_id"] == 42
    assert payload["message"] == "hello"


def test_outside_a_request_nothing_is_attached():
    bind_athlete(7)
    record = _record()
    payload = json.loads(JSONFormatter().format(record))

    assert record.request_id == "-"
    assert "request_id" not in payload
    assert "athlete_id" not in payload
    assert current_request_context() == {}


def test_extra_fields_merged():
    record = _record()
    record.extra_fields = {"path": "/v1/activities"}

    assert json.loads(JSONFormatter().format(record))["path"] == "/v1/activities"


def test_request_id_echoed_on_response(client):
    response = client.get("/health", headers={"X-Request-ID": "trace-abc"})

    assert response.headers["X-Request-ID"] == "trace-abc"


def test_request_id_generated_when_missing(client):
    response = client.get("/health")

    assert len(response.headers["X-Request-ID"]) == 32
