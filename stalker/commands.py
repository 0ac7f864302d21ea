"""Slash commands, message intake and buttons of the Phase 1 / Phase 2 workflow."""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands

from . import view
from .config import MAX_IMAGES_PER_MESSAGE, SESSION_TIMEOUT_SECONDS, ServerConfig
from .exceptions import StorageError
from .models import WeekInfo
from .notifications import is_interaction_expired
from .roster import find_member_clan, has_role
from .sessions import Session, Stage, calculate_statistics
from .timeutils import week_info


logger = logging.getLogger(__name__)

CUSTOM_ID_PATTERN = re.compile(r"^phase([12])_(.+)$")
WEEK_PATTERN = re.compile(r"^(\d{1,2})[-/](\d{4})$")


@dataclass
class PendingStart:
    """A session start waiting for the user to confirm overwriting stored data."""
    phase: int
    clan: str
    guild_id: str
    timeout_handle: Optional[asyncio.TimerHandle] = None


def parse_resolve_id(action: str):
    """Split 'resolve_{nick}_{value}' into (nick, value). Nicks may contain underscores."""
    parts = action.split("_")
    if len(parts) < 3 or parts[0] != "resolve":
        return None
    try:
        value = int(parts[-1])
    except ValueError:
        return None
    return "_".join(parts[1:-1]), value


def parse_week(text: str):
    """'41-2025' or '41/2025' as (week, year), or None."""
    match = WEEK_PATTERN.match(text.strip())
    if not match:
        return None
    week_number, year = int(match.group(1)), int(match.group(2))
    if not 1 <= week_number <= 53:
        return None
    return week_number, year


def has_permission(member, config: ServerConfig) -> bool:
    """Administrators and members of the allowed moderator roles."""
    permissions = getattr(member, "guild_permissions", None)
    if permissions is not None and permissions.administrator:
        return True
    return any(has_role(member, role_id) for role_id in config.allowed_punish_roles)


def resolve_clan(member, config: ServerConfig, clan: Optional[str]) -> Optional[str]:
    """The requested clan if configured, otherwise the member's own clan."""
    if clan:
        return clan if clan in config.target_roles else None
    found = find_member_clan(member, config.target_roles)
    return found[0] if found else None


class PhaseCommands(commands.Cog):
    """Score ingestion from result screenshots."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.context = bot.context
        self.pending_starts: Dict[str, PendingStart] = {}
        self._tasks = set()

    async def _check_access(self, interaction: discord.Interaction) -> Optional[ServerConfig]:
        """Server settings if the user may run the workflow, otherwise reply with an error."""
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

    # ---- commands ------------------------------------------------------------

    @app_commands.command(name="phase1", description="Submit Phase 1 result screenshots")
    @app_commands.describe(clan="Clan to analyze (defaults to your own clan)")
    async def phase1(self, interaction: discord.Interaction, clan: Optional[str] = None):
        """Start a Phase 1 session."""
        await self._start_phase(interaction, 1, clan)

    @app_commands.command(name="phase2", description="Submit Phase 2 result screenshots (3 rounds)")
    @app_commands.describe(clan="Clan to analyze (defaults to your own clan)")
    async def phase2(self, interaction: discord.Interaction, clan: Optional[str] = None):
        """Start a Phase 2 session."""
        await self._start_phase(interaction, 2, clan)

    async def _start_phase(self, interaction: discord.Interaction, phase: int, clan: Optional[str]):
        config = await self._check_access(interaction)
        if config is None:
            return

        clan_key = resolve_clan(interaction.user, config, clan)
        if clan_key is None:
            await interaction.response.send_message(
                embed=view.format_error("Unknown clan, or you don't have any of the clan roles."), ephemeral=True)
            return

        guild_id, user_id = str(interaction.guild_id), str(interaction.user.id)
        if self.context.sessions.get_session_by_user(user_id) is not None:
            await interaction.response.send_message(
                embed=view.format_error("You already have an active session."), ephemeral=True)
            return

        admission = await self.context.queue.try_admit(guild_id, user_id)
        if not admission.admitted:
            info = self.context.queue.queue_info(guild_id, user_id)
            active_name = await self.context.notifications.display_name(guild_id, info.active_user_id)
            ahead_names = await self.context.notifications.display_names(guild_id, info.ahead)
            await interaction.response.send_message(
                embed=view.queue_busy(info, active_name, ahead_names), ephemeral=True)
            return

        try:
            await interaction.response.defer()
            week = week_info()
            summary = await self.context.store.get_summary(phase, guild_id, week.week_number, week.year, clan_key)
            if summary is not None:
                creator = await self.context.notifications.display_name(guild_id, summary.created_by)
                embed, buttons = view.overwrite_warning(summary, week, config.clan_name(clan_key), phase, creator)
                self._hold_pending_start(user_id, PendingStart(phase=phase, clan=clan_key, guild_id=guild_id))
                await interaction.edit_original_response(embed=embed, view=buttons)
                return

            await self._open_session(interaction, phase, clan_key)
        except discord.HTTPException as e:
            logger.error(f"❌ Failed to start Phase {phase} for user {user_id}: {e}")
            self._drop_pending_start(user_id)
            session = self.context.sessions.get_session_by_user(user_id)
            if session is not None:
                await self.context.sessions.cleanup_session(session.session_id)
            else:
                await self.context.queue.release(guild_id, user_id)

    @app_commands.command(name="results", description="Show stored results for a week")
    @app_commands.describe(phase="1 or 2", week="Week as 41-2025; omit to list available weeks",
                           clan="Clan (defaults to your own clan)")
    @app_commands.choices(phase=[
        app_commands.Choice(name="Phase 1", value=1),
        app_commands.Choice(name="Phase 2", value=2),
    ])
    async def results(self, interaction: discord.Interaction, phase: int,
                      week: Optional[str] = None, clan: Optional[str] = None):
        """Show a stored week record, or the weeks that have one."""
        config = await self._check_access(interaction)
        if config is None:
            return
        guild_id = str(interaction.guild_id)

        if week is None:
            weeks = await self.context.store.get_available_weeks(phase, guild_id)
            await interaction.response.send_message(embed=view.available_weeks(weeks, phase, config), ephemeral=True)
            return

        parsed = parse_week(week)
        if parsed is None:
            await interaction.response.send_message(
                embed=view.format_error("Invalid week. Use the format 41-2025."), ephemeral=True)
            return

        clan_key = resolve_clan(interaction.user, config, clan)
        if clan_key is None:
            await interaction.response.send_message(
                embed=view.format_error("Unknown clan, or you don't have any of the clan roles."), ephemeral=True)
            return

        week_number, year = parsed
        record = await self.context.store.get_results(phase, guild_id, week_number, year, clan_key)
        if record is None:
            await interaction.response.send_message(
                embed=view.format_error(f"No Phase {phase} data for week {week_number}/{year} "
                                        f"(clan: {config.clan_name(clan_key)})."),
                ephemeral=True)
            return

        embed = view.week_results(record, phase, WeekInfo(week_number=week_number, year=year), config.clan_name(clan_key))
        await interaction.response.send_message(embed=embed)

    # ---- pending overwrite confirmations ---------------------------------------

    def _hold_pending_start(self, user_id: str, pending: PendingStart):
        self._drop_pending_start(user_id)
        try:
            loop = asyncio.get_running_loop()
            pending.timeout_handle = loop.call_later(SESSION_TIMEOUT_SECONDS, self._spawn_pending_expiry, user_id)
        except RuntimeError:
            pending.timeout_handle = None
        self.pending_starts[user_id] = pending

    def _drop_pending_start(self, user_id: str) -> Optional[PendingStart]:
        pending = self.pending_starts.pop(user_id, None)
        if pending is not None and pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
        return pending

    def _spawn_pending_expiry(self, user_id: str):
        task = asyncio.ensure_future(self._expire_pending_start(user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _expire_pending_start(self, user_id: str):
        pending = self._drop_pending_start(user_id)
        if pending is not None:
            logger.warning(f"⏰ Overwrite confirmation for user {user_id} expired")
            await self.context.queue.release(pending.guild_id, user_id)

    async def _handle_overwrite(self, interaction: discord.Interaction, phase: int, confirmed: bool):
        user_id = str(interaction.user.id)
        pending = self.pending_starts.get(user_id)
        if pending is None or pending.phase != phase:
            await interaction.response.send_message(
                embed=view.format_error("This confirmation is not yours or has expired."), ephemeral=True)
            return
        self._drop_pending_start(user_id)

        if not confirmed:
            await self.context.queue.release(pending.guild_id, user_id)
            await interaction.response.edit_message(content="❌ Operation cancelled.", embed=None, view=None)
            return

        logger.info(f"⚠️ User {user_id} confirmed overwriting Phase {phase} data")
        await self._open_session(interaction, phase, pending.clan)

    # ---- session workflow ------------------------------------------------------

    async def _open_session(self, interaction: discord.Interaction, phase: int, clan: str):
        session = self.context.sessions.create_session(
            interaction.user.id, interaction.guild_id, interaction.channel_id, phase, clan)
        session.public_interaction = interaction

        embed, buttons = view.awaiting_images(phase, week_info(), session.current_round if phase == 2 else None)
        await self._respond(interaction, embed=embed, view=buttons)

    @staticmethod
    async def _respond(interaction: discord.Interaction, **kwargs):
        """Replace the message the interaction belongs to."""
        if interaction.response.is_done():
            await interaction.edit_original_response(**kwargs)
        else:
            await interaction.response.edit_message(**kwargs)

    async def _edit_public(self, session: Session, **kwargs) -> bool:
        """Edit the session message outside an interaction. False if the interaction expired."""
        try:
            await session.public_interaction.edit_original_response(**kwargs)
            return True
        except discord.HTTPException as e:
            if not is_interaction_expired(e):
                raise
            logger.warning(f"⏰ Interaction expired for session {session.session_id}")
            await self.context.notifications.send_channel_message(session.channel_id, view.session_expired())
            await self.context.sessions.cleanup_session(session.session_id)
            return False

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        """Collect screenshots posted by a user whose session is waiting for images."""
        if message.author.bot or message.guild is None:
            return

        session = self.context.sessions.get_session_by_user(message.author.id)
        if session is None or session.stage != Stage.AWAITING_IMAGES or session.channel_id != str(message.channel.id):
            return

        images = [a for a in message.attachments if a.content_type and a.content_type.startswith("image/")]
        if not images:
            return
        if len(images) > MAX_IMAGES_PER_MESSAGE:
            await message.channel.send(
                embed=view.format_error(f"You can submit at most {MAX_IMAGES_PER_MESSAGE} images in one message."),
                delete_after=15)
            return

        config = self.context.settings.get(message.guild.id)
        if config is None:
            return

        sessions = self.context.sessions
        sessions.refresh_timeout(session.session_id)
        logger.info(f"📸 Received {len(images)} images from {message.author.display_name}")

        try:
            files = [await sessions.download_attachment(session, attachment, index)
                     for index, attachment in enumerate(images)]
            try:
                await message.delete()
            except discord.HTTPException as e:
                logger.warning(f"⚠️ Could not delete image message: {e}")

            results = await sessions.process_images(
                session, files, message.guild, message.author, config.target_roles,
                progress=self.context.notifications.update_progress)
        except (discord.HTTPException, OSError, StorageError) as e:
            logger.error(f"❌ Error processing images: {e}")
            await self.context.notifications.send_channel_message(
                session.channel_id, view.format_error("An error occurred while processing images. Try again."))
            await sessions.cleanup_session(session.session_id)
            return

        if results is None:
            return

        session.stage = Stage.CONFIRMING_COMPLETE
        sessions.refresh_timeout(session.session_id)
        embed, buttons = view.processed_images(len(results), len(session.processed_images), session.phase)
        await self._edit_public(session, embed=embed, view=buttons)

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        """Route workflow button clicks by custom id."""
        if interaction.type != discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id", "")
        match = CUSTOM_ID_PATTERN.match(custom_id)
        if not match:
            return
        phase, action = int(match.group(1)), match.group(2)

        if action in ("overwrite_yes", "overwrite_no"):
            await self._handle_overwrite(interaction, phase, action == "overwrite_yes")
            return

        session = self.context.sessions.get_session_by_user(interaction.user.id)
        if session is None or session.phase != phase:
            await interaction.response.send_message(
                embed=view.format_error("You don't have an active session or it has expired."), ephemeral=True)
            return

        # a fresh component interaction keeps the session message editable
        session.public_interaction = interaction
        self.context.sessions.refresh_timeout(session.session_id)

        try:
            await self._dispatch(interaction, session, action)
        except (StorageError, discord.HTTPException) as e:
            logger.error(f"💥 Workflow step '{action}' failed in session {session.session_id}: {e}")
            await self.context.sessions.cleanup_session(session.session_id)
            await self.context.notifications.send_channel_message(
                session.channel_id, view.format_error("An error occurred and the session was ended. Data was not saved."))

    async def _dispatch(self, interaction: discord.Interaction, session: Session, action: str):
        if action == "cancel_session":
            await self.context.sessions.cleanup_session(session.session_id)
            await self._respond(interaction, content="❌ Session cancelled.", embed=None, view=None)
        elif action == "complete_no":
            session.stage = Stage.AWAITING_IMAGES
            embed, buttons = view.awaiting_images(session.phase, week_info(),
                                                  session.current_round if session.phase == 2 else None)
            await self._respond(interaction, embed=embed, view=buttons)
        elif action == "complete_yes":
            await self._start_conflict_resolution(interaction, session)
        elif action.startswith("resolve_"):
            parsed = parse_resolve_id(action)
            if parsed is None:
                logger.warning(f"⚠️ Malformed resolve id: {action}")
                return
            session.resolve_conflict(*parsed)
            await self._show_next_conflict(interaction, session)
        elif action == "round_continue":
            await self._continue_round(interaction, session)
        elif action == "confirm_save":
            await self._save(interaction, session)
        elif action == "cancel_save":
            await self.context.sessions.cleanup_session(session.session_id)
            await self._respond(interaction, content="❌ Operation cancelled. Data was not saved.", embed=None, view=None)
        else:
            logger.warning(f"⚠️ Unknown button action: {action}")

    async def _start_conflict_resolution(self, interaction: discord.Interaction, session: Session):
        session.identify_conflicts()
        if session.conflicts:
            session.stage = Stage.RESOLVING_CONFLICTS
        await self._show_next_conflict(interaction, session)

    async def _show_next_conflict(self, interaction: discord.Interaction, session: Session):
        conflict = session.next_unresolved_conflict()
        if conflict is not None:
            embed, buttons = view.conflict(conflict, session.conflict_position(conflict),
                                           len(session.conflicts), session.phase)
            await self._respond(interaction, embed=embed, view=buttons)
            return

        session.stage = Stage.FINAL_CONFIRMATION
        config = self.context.settings.require(session.guild_id)
        week = week_info()
        if session.phase == 1:
            results = session.final_results()
            embed, buttons = view.final_summary(session.statistics(), week, config.clan_name(session.clan),
                                                1, results=results)
        else:
            embed, buttons = view.round_summary(session, week, config.clan_name(session.clan))
        await self._respond(interaction, embed=embed, view=buttons)

    async def _continue_round(self, interaction: discord.Interaction, session: Session):
        if session.phase != 2 or session.stage != Stage.FINAL_CONFIRMATION:
            return

        if not session.is_last_round():
            session.start_next_round()
            embed, buttons = view.awaiting_images(2, week_info(), session.current_round)
            await self._respond(interaction, embed=embed, view=buttons)
            return

        if len(session.rounds_data) < session.current_round:
            session.close_round()
        config = self.context.settings.require(session.guild_id)
        stats = calculate_statistics(session.sum_phase2_results())
        embed, buttons = view.final_summary(stats, week_info(), config.clan_name(session.clan), 2,
                                            total_zero_count=session.total_zero_count())
        await self._respond(interaction, embed=embed, view=buttons)

    async def _save(self, interaction: discord.Interaction, session: Session):
        if session.stage != Stage.FINAL_CONFIRMATION:
            return
        await interaction.response.defer()

        config = self.context.settings.require(session.guild_id)
        clan_name = config.clan_name(session.clan)
        week = week_info()
        saved_by = interaction.user.display_name

        if session.phase == 1:
            results = session.final_results()
            await self.context.sessions.save_phase1(
                session, interaction.guild, self.context.store, str(interaction.user.id), week)
            zero_nicks = [nick for nick, score in results.items() if score == 0]
            embed = view.phase1_saved(session.statistics(), week, clan_name, zero_nicks, saved_by)
        else:
            total_zero_count = session.total_zero_count()
            await self.context.sessions.save_phase2(
                session, interaction.guild, self.context.store, str(interaction.user.id), week)
            embed = view.phase2_saved(total_zero_count, week, clan_name, saved_by)

        await interaction.edit_original_response(embed=embed, view=None)
        await self.context.sessions.cleanup_session(session.session_id)


async def setup(bot: commands.Bot):
    await bot.add_cog(PhaseCommands(bot))
