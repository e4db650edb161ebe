"""
Unit tests for logging redaction, error reporting and webhook deduplication.
"""

import json
import logging

import pytest

from infrastructure import error_reporting
from infrastructure.config.settings import Settings
from infrastructure.logging_config import JSONFormatter, SensitiveDataFilter
from services.webhook_dedup import WebhookDeduplicator, webhook_key


def make_record(msg: str, *args, **extra) -> logging.LogRecord:
    record = logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSensitiveDataFilter:
    """Tests for log redaction."""

    @pytest.mark.parametrize(
        "message",
        [
            "Authorization: Bearer abc.def.ghi",
            '{"client_secret": "hunter2"}',
            "access_token=eyJhbGciOi",
            "SIGNATURE=0123456789abcdef0123456789abcdef",
        ],
    )
    def test_redacts_credentials(self, message):
        record = make_record(message)
        SensitiveDataFilter().filter(record)

        assert "[REDACTED]" in record.getMessage()

    def test_redacts_args(self):
        record = make_record("Request failed: %s", "client_secret=hunter2")
        SensitiveDataFilter().filter(record)

        assert "hunter2" not in record.getMessage()

    def test_leaves_ordinary_messages(self):
        record = make_record("Applying created event for subscription %s", "sub-1")
        SensitiveDataFilter().filter(record)

        assert record.getMessage() == "Applying created event for subscription sub-1"


class TestJSONFormatter:
    """Tests for the JSON log format."""

    def test_includes_event_extras(self):
        record = make_record("Received webhook", provider="paddle", event_kind="created")

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "Received webhook"
        assert entry["provider"] == "paddle"
        assert entry["event_kind"] == "created"
        assert entry["level"] == "INFO"


class TestErrorReporting:
    """Tests for report_error and Sentry initialisation."""

    def test_no_dsn_disables_sentry(self):
        assert error_reporting.init_error_reporting(Settings(sentry_dsn=None)) is False

    def test_malformed_dsn_disables_sentry(self):
        assert error_reporting.init_error_reporting(Settings(sentry_dsn="not-a-dsn")) is False

    def test_report_logs_without_sentry(self, caplog):
        with caplog.at_level(logging.ERROR, logger="infrastructure.error_reporting"):
            error_reporting.report_error("Inconsistent team membership for u1")
            error_reporting.report_error(RuntimeError("boom"))

        assert "Inconsistent team membership for u1" in caplog.text
        assert "boom" in caplog.text


class FakeRedis:
    def __init__(self, fail: bool = False):
        self.keys: dict[str, tuple[int, str]] = {}
        self.fail = fail

    async def exists(self, key: str) -> int:
        if self.fail:
            raise ConnectionError("redis down")
        return int(key in self.keys)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.keys[key] = (ttl, value)


class TestWebhookDeduplicator:
    """Tests for WebhookDeduplicator."""

    def test_key_depends_on_provider_and_body(self):
        assert webhook_key("paddle", b"a=1") == webhook_key("paddle", b"a=1")
        assert webhook_key("paddle", b"a=1") != webhook_key("paypro", b"a=1")
        assert webhook_key("paddle", b"a=1") != webhook_key("paddle", b"a=2")

    def test_from_url_without_url_is_disabled(self):
        assert not WebhookDeduplicator.from_url(None).enabled

    @pytest.mark.asyncio
    async def test_marks_and_detects(self):
        redis = FakeRedis()
        dedup = WebhookDeduplicator(redis, ttl_seconds=60)
        key = webhook_key("paddle", b"a=1")

        assert not await dedup.already_processed(key)
        await dedup.mark_processed(key)

        assert await dedup.already_processed(key)
        assert redis.keys[key] == (60, "1")

    @pytest.mark.asyncio
    async def test_redis_errors_degrade_to_no_dedup(self):
        dedup = WebhookDeduplicator(FakeRedis(fail=True))

        assert not await dedup.already_processed("k")
        await dedup.mark_processed("k")

    @pytest.mark.asyncio
    async def test_disabled_is_a_no_op(self):
        dedup = WebhookDeduplicator(None)

        assert not await dedup.already_processed("k")
        await dedup.mark_processed("k")
        await dedup.close()
