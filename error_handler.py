"""Error handling and owner notification for the Stalker bot."""

import logging
import traceback
from datetime import timedelta
import discord
from discord import app_commands
from discord.ext import commands

from stalker.exceptions import ServerNotConfiguredError, StorageError


logger = logging.getLogger(__name__)


class ErrorHandler:
    """Centralized error handling and notification system."""

    def __init__(self, bot: commands.Bot, owner_id: int):
        self.bot = bot
        self.owner_id = owner_id
        self.error_counts = {}
        self.last_notification = {}
        self.notification_cooldown = 300  # 5 minutes between same error types

    async def _owner(self):
        if not self.owner_id:
            return None
        return self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)

    async def notify_owner(self, title: str, description: str, error: Exception = None):
        """Send a DM notification to the bot owner."""
        try:
            owner = await self._owner()
            if owner is None:
                logger.warning(f"No BOT_OWNER_ID set, skipping notification: {title}")
                return

            embed = discord.Embed(
                title=f"🚨 {title}",
                description=description[:4000],
                color=0xff0000,
                timestamp=discord.utils.utcnow()
            )

            if error:
                embed.add_field(
                    name="Error Details",
                    value=f"```{str(error)[:1000]}```",
                    inline=False
                )

                tb = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
                if len(tb) > 1000:
                    tb = tb[-1000:]  # Last 1000 chars
                embed.add_field(
                    name="Traceback",
                    value=f"```{tb}```",
                    inline=False
                )

            embed.set_footer(text="Stalker Bot Error Handler")

            await owner.send(embed=embed)
            logger.info(f"Sent error notification to owner: {title}")

        except discord.HTTPException as e:
            logger.error(f"Failed to send error notification: {e}")

    def should_notify(self, error_type: str) -> bool:
        """Count the error and apply the per-type notification cooldown."""
        now = discord.utils.utcnow()
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        last = self.last_notification.get(error_type)
        if last is not None and now - last <= timedelta(seconds=self.notification_cooldown):
            return False
        self.last_notification[error_type] = now
        return True

    @staticmethod
    def user_message(error: Exception) -> str:
        """What the user is told about a failed command."""
        original = getattr(error, "original", error)
        if isinstance(original, discord.NotFound) and original.code == 10062:
            return "⏱️ The command took too long to process. Please try again."
        if isinstance(error, (commands.CommandOnCooldown, app_commands.CommandOnCooldown)):
            return f"🕒 Command is on cooldown. Try again in {error.retry_after:.1f} seconds."
        if isinstance(error, (commands.MissingPermissions, app_commands.MissingPermissions)):
            return "🔒 You don't have permission to use this command."
        if isinstance(original, ServerNotConfiguredError):
            return f"⚙️ {original}"
        if isinstance(original, StorageError):
            return "💾 Could not read or write bot data. The bot owner has been notified."
        return "An error occurred while processing your command. The bot owner has been notified."

    async def handle_interaction_error(self, interaction: discord.Interaction, error: Exception):
        """Handle slash command interaction errors."""
        error_type = type(getattr(error, "original", error)).__name__
        command_name = interaction.command.name if interaction.command else "Unknown"

        if self.should_notify(error_type):
            user = f"{interaction.user.display_name} ({interaction.user.id})"
            guild = f"{interaction.guild.name} ({interaction.guild.id})" if interaction.guild else "DM"

            description = (
                f"**Command:** /{command_name}\n"
                f"**User:** {user}\n"
                f"**Guild:** {guild}\n"
                f"**Error Count:** {self.error_counts[error_type]} (since restart)"
            )

            await self.notify_owner(f"Slash Command Error: {error_type}", description, getattr(error, "original", error))

        logger.error(f"Interaction error in {command_name}: {error}")

        try:
            error_embed = discord.Embed(
                title="❌ Command Error",
                description=self.user_message(error),
                color=0xff0000
            )

            if not interaction.response.is_done():
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
            else:
                await interaction.followup.send(embed=error_embed, ephemeral=True)

        except discord.HTTPException as followup_error:
            logger.error(f"Failed to send error message to user: {followup_error}")

    async def send_startup_notification(self):
        """Send notification when bot starts successfully."""
        try:
            owner = await self._owner()
            if owner is None:
                return

            embed = discord.Embed(
                title="✅ Stalker Bot Started",
                description=f"Bot is online and ready in {len(self.bot.guilds)} guild(s)",
                color=0x00ff00,
                timestamp=discord.utils.utcnow()
            )

            await owner.send(embed=embed)
            logger.info("Sent startup notification to owner")

        except discord.HTTPException as e:
            logger.error(f"Failed to send startup notification: {e}")
