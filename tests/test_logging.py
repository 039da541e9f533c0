"""
Tests for the request summary records and the JSON formatter.
"""

import json
import logging

import pytest

from messages_api.logging_utils import (
    HANDLER_NAME,
    ServiceJsonFormatter,
    request_id_ctx,
    setup_logging,
)


@pytest.fixture
def request_records(caplog):
    """Capture INFO and above from the request logger; returns a getter."""
    caplog.set_level(logging.INFO, logger="messages_api.requests")

    def _records():
        return [r for r in caplog.records if r.name == "messages_api.requests"]

    return _records


class TestRequestSummary:
    """Test the one-record-per-request summary written by the middleware."""

    def test_create_fields(self, client, request_records):
        created = client.post("/messages", json={"message": "logged"}).json()

        record = request_records()[-1]
        assert record.getMessage() == "create ok"
        assert record.operation == "create"
        assert record.result == "ok"
        assert record.message_id == created["id"]
        assert record.status == 201
        assert record.method == "POST"
        assert record.path == "/messages"
        assert not hasattr(record, "rows_affected")

    def test_update_rows_affected(self, client, request_records):
        created = client.post("/messages", json={"message": "before"}).json()

        client.put("/messages", json={"id": created["id"], "message": "after"})

        record = request_records()[-1]
        assert record.getMessage() == "update ok"
        assert record.operation == "update"
        assert record.message_id == created["id"]
        assert record.rows_affected == 1

    def test_update_missing_row_is_noop(self, client, request_records):
        client.put("/messages", json={"id": 777, "message": "ghost"})

        record = request_records()[-1]
        assert record.getMessage() == "update noop"
        assert record.result == "noop"
        assert record.message_id == 777
        assert record.rows_affected == 0
        assert record.levelno == logging.INFO

    def test_delete_rows_affected(self, client, request_records):
        created = client.post("/messages", json={"message": "doomed"}).json()

        client.delete("/messages", params={"id": created["id"]})

        record = request_records()[-1]
        assert record.operation == "delete"
        assert record.result == "ok"
        assert record.message_id == created["id"]
        assert record.rows_affected == 1

    def test_bad_request_outcome(self, client, request_records):
        client.delete("/messages", params={"id": "abc"})

        record = request_records()[-1]
        assert record.getMessage() == "delete bad_request"
        assert record.result == "bad_request"
        assert record.status == 400
        assert record.levelno == logging.WARNING
        assert not hasattr(record, "message_id")

    def test_not_found_outcome(self, make_client, request_records):
        client = make_client(REPORT_MISSING_ROWS=True)

        client.delete("/messages", params={"id": 5})

        record = request_records()[-1]
        assert record.result == "not_found"
        assert record.status == 404

    def test_store_error_outcome(self, client, store, request_records):
        from messages_api.storage import Base
        Base.metadata.drop_all(bind=store.engine)

        client.get("/messages")

        record = request_records()[-1]
        assert record.getMessage() == "list error"
        assert record.levelno == logging.ERROR

    def test_request_id_matches_header(self, client, request_records):
        response = client.get("/messages")

        record = request_records()[-1]
        assert record.request_id == response.headers["x-request-id"]

    def test_other_routes(self, client, request_records):
        client.get("/health/live")

        record = request_records()[-1]
        assert record.getMessage() == "Request completed"
        assert record.path == "/health/live"
        assert not hasattr(record, "operation")


class TestFormatter:
    """Test the JSON shape of formatted records."""

    def make_record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("messages_api.test", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_fields(self):
        formatter = ServiceJsonFormatter("%(ts)s %(level)s %(name)s %(message)s")

        output = json.loads(formatter.format(self.make_record(rows_affected=0)))

        assert output["message"] == "hello"
        assert output["level"] == "INFO"
        assert output["name"] == "messages_api.test"
        assert output["ts"].endswith("Z")
        assert output["rows_affected"] == 0
        assert "request_id" not in output

    def test_request_id_from_context(self):
        formatter = ServiceJsonFormatter("%(ts)s %(level)s %(name)s %(message)s")
        token = request_id_ctx.set("req-123")
        try:
            output = json.loads(formatter.format(self.make_record()))
        finally:
            request_id_ctx.reset(token)

        assert output["request_id"] == "req-123"


class TestSetupLogging:
    """Test handler installation."""

    def test_repeated_setup_keeps_one_handler(self):
        setup_logging("WARNING")
        root = setup_logging("WARNING")

        service_handlers = [h for h in root.handlers if h.get_name() == HANDLER_NAME]
        assert len(service_handlers) == 1
        assert logging.getLogger("uvicorn.access").disabled is True
