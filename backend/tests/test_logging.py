import json
import logging
import os

from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from app.main import app  # noqa: E402
from app.core.logging import JsonLogFormatter  # noqa: E402


def test_logging_includes_request_id_and_status(caplog):
    logger = logging.getLogger("api_logger")
    logger.addHandler(caplog.handler)
    logger.setLevel(logging.INFO)
    try:
        client = TestClient(app)
        response = client.get("/ping", headers={"X-Request-ID": "req-123"})
        assert response.status_code == 200
        assert response.headers.get("X-Request-ID") == "req-123"

        records = [record for record in caplog.records if record.getMessage() == "request.completed"]
        assert records, "Expected a structured request log entry"
        entry = records[-1]
        assert getattr(entry, "request_id", None) == "req-123"
        assert getattr(entry, "route", None) == "/ping"
        assert getattr(entry, "status_code", None) == 200
    finally:
        logger.removeHandler(caplog.handler)


def test_json_formatter_serializes_extra_fields():
    record = logging.LogRecord(
        name="app.core.commissions",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="commission.released",
        args=(),
        exc_info=None,
    )
    record.released_count = 3
    record.released_amount = "42.50"
    record.request_id = None

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["message"] == "commission.released"
    assert payload["logger"] == "app.core.commissions"
    assert payload["level"] == "INFO"
    assert payload["released_count"] == 3
    assert payload["released_amount"] == "42.50"
    assert payload["request_id"] is None
    assert "lineno" not in payload
