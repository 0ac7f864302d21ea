"""Tests for error_handler.py — user facing messages and owner notifications."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import discord
from discord import app_commands

from error_handler import ErrorHandler
from stalker.exceptions import ServerNotConfiguredError, StorageError


class TestUserMessage:
    """Tests for ErrorHandler.user_message()."""

    def test_cooldown(self) -> None:
        error = app_commands.CommandOnCooldown(app_commands.Cooldown(1, 10), 2.5)
        assert "2.5 seconds" in ErrorHandler.user_message(error)

    def test_missing_permissions(self) -> None:
        error = app_commands.MissingPermissions(["administrator"])
        assert ErrorHandler.user_message(error).startswith("🔒")

    def test_unconfigured_server(self) -> None:
        message = ErrorHandler.user_message(ServerNotConfiguredError("42"))
        assert "servers.json" in message

    def test_wrapped_storage_error(self) -> None:
        error = app_commands.CommandInvokeError(MagicMock(), StorageError("data/x.json", "disk full"))
        assert ErrorHandler.user_message(error).startswith("💾")

    def test_generic(self) -> None:
        assert "bot owner has been notified" in ErrorHandler.user_message(RuntimeError("x"))


class TestNotifications:
    """Tests for cooldowns and owner DMs."""

    def test_cooldown_per_error_type(self) -> None:
        handler = ErrorHandler(MagicMock(), 0)

        assert handler.should_notify("KeyError")
        assert not handler.should_notify("KeyError")
        assert handler.should_notify("ValueError")
        assert handler.error_counts["KeyError"] == 2

        handler.last_notification["KeyError"] -= timedelta(seconds=301)
        assert handler.should_notify("KeyError")

    async def test_no_owner_configured(self) -> None:
        bot = MagicMock()
        bot.fetch_user = AsyncMock()
        handler = ErrorHandler(bot, 0)

        await handler.notify_owner("Title", "Description")

        bot.fetch_user.assert_not_awaited()

    async def test_interaction_error_reply(self) -> None:
        owner = MagicMock()
        owner.send = AsyncMock()
        bot = MagicMock()
        bot.get_user = MagicMock(return_value=owner)
        handler = ErrorHandler(bot, 99)

        interaction = MagicMock()
        interaction.command.name = "phase1"
        interaction.response.is_done = MagicMock(return_value=False)
        interaction.response.send_message = AsyncMock()

        await handler.handle_interaction_error(interaction, RuntimeError("boom"))

        owner.send.assert_awaited_once()
        kwargs = interaction.response.send_message.await_args.kwargs
        assert kwargs["ephemeral"] is True
        assert kwargs["embed"].title == "❌ Command Error"
        assert isinstance(kwargs["embed"], discord.Embed)
