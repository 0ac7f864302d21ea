"""Moderation and maintenance commands: punishment points, OCR debugging, migration."""

import logging
import os
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from . import alignment, view
from .commands import has_permission
from .config import TIMEZONE
from .exceptions import StorageError
from .timeutils import next_monday_midnight


logger = logging.getLogger(__name__)


class AdminCommands(commands.Cog):
    """Punishment points and bot-owner maintenance."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.context = bot.context
        self.owner_id = int(os.getenv("BOT_OWNER_ID", "0"))

    def is_owner(self, user_id: int) -> bool:
        """Check if user is the bot owner."""
        if user_id == self.owner_id:
            return True

        application = getattr(self.bot, "application", None)
        owner = getattr(application, "owner", None) if application else None
        return owner is not None and user_id == owner.id

    async def _moderator_config(self, interaction: discord.Interaction):
        config = self.context.settings.get(interaction.guild_id) if interaction.guild_id else None
        if config is None:
            await interaction.response.send_message(
                embed=view.format_error("Bot is not configured for this server. Check servers.json configuration."),
                ephemeral=True)
            return None
        if not has_permission(interaction.user, config):
            await interaction.response.send_message(
                embed=view.format_error("You don't have permission to use this command."), ephemeral=True)
            return None
        return config

    @app_commands.command(name="punishment", description="Show the punishment points ranking for a clan")
    @app_commands.describe(category="Clan category")
    async def punishment(self, interaction: discord.Interaction, category: str):
        config = await self._moderator_config(interaction)
        if config is None:
            return

        role_id = config.target_roles.get(category)
        if role_id is None:
            await interaction.response.send_message(embed=view.format_error("Unknown category."), ephemeral=True)
            return

        await interaction.response.defer()
        ranking = await self.context.punishments.get_ranking_for_role(interaction.guild, role_id)
        embed = view.punishment_ranking(
            ranking, config, category, next_monday_midnight(),
            config.warning_channels.get(role_id), TIMEZONE,
        )
        await interaction.followup.send(embed=embed)

    @punishment.autocomplete("category")
    async def category_autocomplete(self, interaction: discord.Interaction, current: str):
        config = self.context.settings.get(interaction.guild_id) if interaction.guild_id else None
        if config is None:
            return []
        return [
            app_commands.Choice(name=config.clan_name(clan), value=clan)
            for clan in config.target_roles
            if current.lower() in clan.lower() or current.lower() in config.clan_name(clan).lower()
        ][:25]

    @app_commands.command(name="points", description="Add, remove or show a user's punishment points")
    @app_commands.describe(user="Member", amount="Points to add (>0) or remove (<0); omit to delete the user")
    async def points(self, interaction: discord.Interaction, user: discord.Member, amount: Optional[int] = None):
        """Manage punishment points manually."""
        config = await self._moderator_config(interaction)
        if config is None:
            return

        await interaction.response.defer()
        guild = interaction.guild
        user_id = str(user.id)
        try:
            if amount is None:
                await self.context.punishments.delete_user(guild, user_id)
                message = f"✅ Removed user {user.mention} from the punishment points system."
            elif amount > 0:
                await self.context.punishments.add_points_manually(guild, user_id, amount)
                message = f"✅ Added {amount} points for {user.mention}."
            elif amount < 0:
                result = await self.context.punishments.remove_points_manually(guild, user_id, abs(amount))
                if result is None:
                    message = f"{user.mention} has no punishment points."
                else:
                    message = f"✅ Removed {abs(amount)} points from {user.mention}."
            else:
                current = await self.context.ledger.get_user(guild.id, user_id)
                message = f"{user.mention} currently has {current.points if current else 0} punishment points."
        except discord.NotFound:
            await interaction.followup.send(embed=view.format_error(f"{user.mention} is not a member of this server."))
            return
        except StorageError as e:
            logger.error(f"💥 Punishment storage failure: {e}")
            await interaction.followup.send(embed=view.format_error("Could not update punishment points."))
            return

        await interaction.followup.send(embed=view.format_success(message))

    @app_commands.command(name="ocr-debug", description="Toggle detailed OCR alignment logging")
    @app_commands.describe(enabled="Enable or disable; omit to show the current state")
    async def ocr_debug(self, interaction: discord.Interaction, enabled: Optional[bool] = None):
        permissions = getattr(interaction.user, "guild_permissions", None)
        if permissions is None or not permissions.administrator:
            await interaction.response.send_message(
                embed=view.format_error("This command requires administrator permissions."), ephemeral=True)
            return

        if enabled is None:
            state = "✅ Enabled" if alignment.detailed_logging else "❌ Disabled"
            await interaction.response.send_message(f"🔍 **Detailed OCR logging:** {state}", ephemeral=True)
            return

        alignment.set_detailed_logging(enabled)
        emoji = "🔍" if enabled else "🔇"
        state = "enabled" if enabled else "disabled"
        logger.info(f"{emoji} Detailed OCR logging {state} by {interaction.user.display_name}")
        await interaction.response.send_message(f"{emoji} Detailed OCR logging {state}.", ephemeral=True)

    @app_commands.command(name="admin_migrate_results", description="[ADMIN] Split legacy result files per week")
    async def migrate_results(self, interaction: discord.Interaction):
        if not self.is_owner(interaction.user.id):
            await interaction.response.send_message("❌ This command is restricted to bot owners.", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        result = await self.context.store.migrate_to_split_files()
        if not result.success:
            await interaction.followup.send(embed=view.format_error(f"Migration failed: {result.error}"), ephemeral=True)
            return

        embed = view.format_success(
            f"Migration finished.\n\n**Phase 1 records:** {result.phase1_count}\n"
            f"**Phase 2 records:** {result.phase2_count}\n**Errors:** {result.errors}"
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="admin_weekly_decay", description="[ADMIN] Run the weekly punishment point removal")
    async def weekly_decay(self, interaction: discord.Interaction):
        if not self.is_owner(interaction.user.id):
            await interaction.response.send_message("❌ This command is restricted to bot owners.", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        result = await self.context.punishments.run_weekly_decay(self.bot.guilds)
        if result.applied:
            message = f"Removed 1 point from {result.cleaned_users} user(s) for {result.week_key}."
        else:
            message = f"Weekly removal already ran for {result.week_key}."
        await interaction.followup.send(embed=view.format_success(message), ephemeral=True)


async def setup(bot: commands.Bot):
    await bot.add_cog(AdminCommands(bot))
