"""Tests for log_webhook.py — forwarding log records to a webhook."""

import logging

import pytest

from log_webhook import WebhookLogHandler, split_message


class TestSplitMessage:
    """Tests for split_message()."""

    def test_short_text_is_one_chunk(self) -> None:
        assert split_message("hello") == ["hello"]

    def test_prefers_line_breaks(self) -> None:
        text = "a" * 6 + "\n" + "b" * 6

        assert split_message(text, limit=10) == ["aaaaaa", "bbbbbb"]

    def test_hard_cut_without_line_breaks(self) -> None:
        assert split_message("x" * 25, limit=10) == ["x" * 10, "x" * 10, "x" * 5]

    def test_empty(self) -> None:
        assert split_message("") == []


class TestWebhookLogHandler:
    """Tests for WebhookLogHandler buffering."""

    def test_emit_queues_formatted_record(self) -> None:
        handler = WebhookLogHandler("https://discord.com/api/webhooks/1/token")
        handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        record = logging.LogRecord("stalker", logging.ERROR, __file__, 1, "boom", None, None)

        handler.handle(record)

        assert handler.pending.get_nowait() == "ERROR boom"

    def test_below_level_is_dropped(self) -> None:
        handler = WebhookLogHandler("https://discord.com/api/webhooks/1/token")
        logger = logging.getLogger("stalker.tests.webhook_level")
        logger.setLevel(logging.DEBUG)
        logger.addHandler(handler)
        try:
            logger.info("fine")
        finally:
            logger.removeHandler(handler)

        assert handler.pending.empty()

    @pytest.mark.parametrize("name", ["discord.webhook", "discord.webhook.async_"])
    def test_webhook_logger_records_are_dropped(self, name: str) -> None:
        handler = WebhookLogHandler("https://discord.com/api/webhooks/1/token")
        record = logging.LogRecord(name, logging.ERROR, __file__, 1, "rate limited", None, None)

        handler.handle(record)

        assert handler.pending.empty()

    def test_other_discord_records_pass(self) -> None:
        handler = WebhookLogHandler("https://discord.com/api/webhooks/1/token")
        handler.setFormatter(logging.Formatter("%(name)s %(message)s"))
        record = logging.LogRecord("discord.client", logging.ERROR, __file__, 1, "boom", None, None)

        handler.handle(record)

        assert handler.pending.get_nowait() == "discord.client boom"

    async def test_stop_without_start(self) -> None:
        handler = WebhookLogHandler("https://discord.com/api/webhooks/1/token")
        await handler.stop()
        assert handler._task is None
