"""Tests for structured logging helpers and HTTP instrumentation."""

import io
import json
import logging

import httpx

from BlazeKit import B2Client
from BlazeKit.logging_config import (
    ROOT_LOGGER_NAME,
    JSONFormatter,
    generate_correlation_id,
    mask_sensitive_data,
    setup_logging,
)
from BlazeKit.network.client import create_http_client
from BlazeKit.network.instrumentation import redact_url
from BlazeKit.settings import ClientSettings


def test_mask_sensitive_data():
    masked = mask_sensitive_data(
        {"authorizationToken": "t", "Authorization": "a", "application_key": "k", "status": 200}
    )
    assert masked == {
        "authorizationToken": "***masked***",
        "Authorization": "***masked***",
        "application_key": "***masked***",
        "status": 200,
    }


def test_json_formatter_merges_extra_fields():
    record = logging.makeLogRecord(
        {"name": "BlazeKit.upload", "levelname": "INFO", "msg": "Uploading file", "size": 10, "token": "x"}
    )
    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "Uploading file"
    assert payload["logger"] == "BlazeKit.upload"
    assert payload["size"] == 10
    assert payload["token"] == "***masked***"
    assert payload["timestamp"].endswith("Z")


def test_setup_logging_replaces_managed_handler():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    before = list(logger.handlers)
    try:
        first, second = io.StringIO(), io.StringIO()
        setup_logging("INFO", stream=first)
        setup_logging("DEBUG", stream=second)

        managed = [h for h in logger.handlers if getattr(h, "_blazekit_managed", False)]
        assert len(managed) == 1
        assert logger.level == logging.DEBUG

        logging.getLogger("BlazeKit.test").info("hello", extra={"bucket_id": "b1"})
        assert first.getvalue() == ""
        line = json.loads(second.getvalue().strip())
        assert line["bucket_id"] == "b1"
    finally:
        for handler in list(logger.handlers):
            if handler not in before:
                logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)


def test_correlation_ids_are_short_and_unique():
    ids = {generate_correlation_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(value) == 12 for value in ids)


def test_redact_url_strips_query():
    url = "https://f001.test.local/file/b/a.txt?Authorization=secret"
    assert redact_url(url) == "https://f001.test.local/file/b/a.txt"


def test_http_client_emits_net_request_records(caplog):
    transport = httpx.MockTransport(lambda request: httpx.Response(204))
    client = create_http_client(ClientSettings(read_timeout_sec=5), transport=transport)

    with caplog.at_level(logging.DEBUG, logger="BlazeKit.network.instrumentation"):
        client.get("https://api001.test.local/b2api/v1/x?token=secret")
    client.close()

    (record,) = [r for r in caplog.records if r.getMessage() == "net.request"]
    assert record.status == 204
    assert record.method == "GET"
    assert "secret" not in record.url_redacted
    assert record.elapsed_ms is not None
    assert client.timeout.read == 5
    assert client.headers["User-Agent"].startswith("blazekit/")


def _managed_handlers(logger):
    return [h for h in logger.handlers if getattr(h, "_blazekit_managed", False)]


def test_client_applies_configured_log_level(settings, http_client):
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    before = list(logger.handlers)
    try:
        B2Client(settings, http_client=http_client, authorize=False)
        assert _managed_handlers(logger) == [h for h in before if getattr(h, "_blazekit_managed", False)]

        configured = settings.model_copy(update={"log_level": "WARNING"})
        B2Client(configured, http_client=http_client, authorize=False, configure_logging=True)

        assert len(_managed_handlers(logger)) == 1
        assert logger.level == logging.WARNING
    finally:
        for handler in list(logger.handlers):
            if handler not in before:
                logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
