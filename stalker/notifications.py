"""DM and channel notifications for the queue and ingestion sessions."""

import logging
from typing import List, Optional

import discord

from . import view
from .queue import QueueInfo
from .sessions import ProgressStatus, ProgressUpdate, Session


logger = logging.getLogger(__name__)

EXPIRED_INTERACTION_CODES = (10015, 10062, 50027)


def is_interaction_expired(error: Exception) -> bool:
    """Whether Discord rejected an edit because the interaction token is gone."""
    if getattr(error, "code", None) in EXPIRED_INTERACTION_CODES:
        return True
    text = str(error)
    return "Unknown Webhook" in text or "Invalid Webhook Token" in text


class NotificationManager:
    """Delivers queue DMs and keeps the session's public message up to date."""

    def __init__(self, bot):
        self.bot = bot

    async def _fetch_user(self, user_id: str):
        user = self.bot.get_user(int(user_id))
        if user is None:
            user = await self.bot.fetch_user(int(user_id))
        return user

    async def display_name(self, guild_id: str, user_id: Optional[str]) -> Optional[str]:
        """Member display name in the guild, falling back to a mention."""
        if user_id is None:
            return None
        guild = self.bot.get_guild(int(guild_id))
        if guild is not None:
            member = guild.get_member(int(user_id))
            if member is None:
                try:
                    member = await guild.fetch_member(int(user_id))
                except discord.HTTPException:
                    member = None
            if member is not None:
                return member.display_name
        return f"<@{user_id}>"

    async def display_names(self, guild_id: str, user_ids: List[str]) -> List[str]:
        return [await self.display_name(guild_id, user_id) for user_id in user_ids]

    async def send_dm(self, user_id: str, embed: discord.Embed) -> bool:
        """DM a user. Closed DMs are logged, not raised."""
        try:
            user = await self._fetch_user(user_id)
            await user.send(embed=embed)
            return True
        except discord.Forbidden:
            logger.warning(f"⚠️ Cannot send DM to user {user_id} - DMs disabled")
        except discord.HTTPException as e:
            logger.error(f"❌ Error sending DM to user {user_id}: {e}")
        return False

    async def notify_turn(self, guild_id: str, user_id: str, expires_at: float) -> None:
        if await self.send_dm(user_id, view.your_turn(expires_at)):
            logger.info(f"✅ Sent turn notification to user {user_id}")

    async def notify_position(self, guild_id: str, user_id: str, info: QueueInfo) -> None:
        active_name = await self.display_name(guild_id, info.active_user_id)
        ahead_names = await self.display_names(guild_id, info.ahead)
        if await self.send_dm(user_id, view.in_queue(info, active_name, ahead_names)):
            logger.info(f"✅ Sent queue position ({info.position}) to user {user_id}")

    async def notify_turn_lost(self, guild_id: str, user_id: str) -> None:
        if await self.send_dm(user_id, view.turn_lost()):
            logger.info(f"✅ Sent timeout notification to user {user_id}")

    async def send_channel_message(self, channel_id: str, embed: discord.Embed) -> bool:
        channel = self.bot.get_channel(int(channel_id))
        if channel is None:
            logger.warning(f"⚠️ Channel {channel_id} not accessible")
            return False
        try:
            await channel.send(embed=embed)
            return True
        except discord.HTTPException as e:
            logger.error(f"❌ Failed to send message to channel {channel_id}: {e}")
            return False

    async def send_session_expired(self, session: Session) -> None:
        """Tell the user their session timed out, on the session message or in the channel."""
        interaction = session.public_interaction
        if interaction is not None:
            try:
                await interaction.edit_original_response(embed=view.session_expired(), view=None)
                return
            except discord.HTTPException as e:
                logger.info(f"⏰ Session message no longer editable: {e}")
        await self.send_channel_message(session.channel_id, view.session_expired())

    async def update_progress(self, session: Session, update: ProgressUpdate) -> ProgressStatus:
        """Show image processing progress on the session message.

        An expired interaction is reported in the channel and returned as
        EXPIRED so the caller can stop processing.
        """
        interaction = session.public_interaction
        if interaction is None:
            return ProgressStatus.OK
        try:
            await interaction.edit_original_response(embed=view.progress(session, update), view=None)
        except discord.HTTPException as e:
            if is_interaction_expired(e):
                logger.warning(f"⏰ Interaction expired for session {session.session_id}, stopping processing")
                await self.send_channel_message(session.channel_id, view.session_expired())
                return ProgressStatus.EXPIRED
            logger.error(f"❌ Error updating progress: {e}")
        return ProgressStatus.OK
