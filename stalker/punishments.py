"""Discord side effects of the punishment ledger: roles, warnings and rankings."""

import logging
from typing import Iterable, List, Optional

import discord

from .config import POINT_LIMITS, WARNING_POINTS, ServerConfig, ServerSettings
from .ledger import DecayResult, PunishmentLedger
from .models import RankingEntry, UserPunishment
from .roster import has_role


logger = logging.getLogger(__name__)

MANUAL_ADD_REASON = "Manual point addition"


def warning_message(member, points: int) -> Optional[str]:
    """Text posted to the clan's warning channel at 2, 3 and 5 points."""
    if points == 2:
        return (f"⚠️ **WARNING** ⚠️\n\n{member.mention} has received a punishment role for accumulated penalty points!\n\n"
                f"**Current penalty points:** {points}\n**Reason:** Insufficient boss battles")
    if points == 3:
        return (f"🚨 **LOTTERY BAN** 🚨\n\n{member.mention} has been excluded from the Glory lottery!\n\n"
                f"**Current penalty points:** {points}\n**Reason:** Exceeded the 3 penalty point limit")
    if points == 5:
        return (f"🔴 **CLAN REMOVAL** 🔴\n\n{member.mention} has reached the maximum penalty points and is being removed from the clan!\n\n"
                f"**Current penalty points:** {points}\n**Reason:** Reached maximum penalty point limit")
    return None


def user_target_role_id(member, config: ServerConfig) -> Optional[str]:
    """The first clan role the member carries."""
    for role_id in config.target_roles.values():
        if has_role(member, role_id):
            return role_id
    return None


class PunishmentService:
    """Keeps punishment roles and warnings in line with ledger points."""

    def __init__(self, ledger: PunishmentLedger, settings: ServerSettings):
        self.ledger = ledger
        self.settings = settings

    async def update_user_roles(self, member, points: int) -> str:
        """Give the member exactly the punishment roles their points call for."""
        config = self.settings.require(member.guild.id)
        punishment_role = member.guild.get_role(int(config.punishment_role_id)) if config.punishment_role_id else None
        lottery_ban_role = member.guild.get_role(int(config.lottery_ban_role_id)) if config.lottery_ban_role_id else None

        if punishment_role is None:
            return "❌ Punishment role not found"
        if lottery_ban_role is None:
            return "❌ Lottery ban role not found"

        has_punishment = has_role(member, punishment_role.id)
        has_lottery_ban = has_role(member, lottery_ban_role.id)
        changes = []

        if points >= POINT_LIMITS["lottery_ban"]:
            if has_punishment:
                await member.remove_roles(punishment_role, reason=f"{points} penalty points")
                changes.append("➖ Removed punishment role")
            if not has_lottery_ban:
                await member.add_roles(lottery_ban_role, reason=f"{points} penalty points")
                changes.append("🚨 Added lottery ban role")
        elif points >= POINT_LIMITS["punishment_role"]:
            if has_lottery_ban:
                await member.remove_roles(lottery_ban_role, reason=f"{points} penalty points")
                changes.append("➖ Removed lottery ban role")
            if not has_punishment:
                await member.add_roles(punishment_role, reason=f"{points} penalty points")
                changes.append("🎭 Added punishment role")
        else:
            if has_lottery_ban:
                await member.remove_roles(lottery_ban_role, reason=f"{points} penalty points")
                changes.append("➖ Removed lottery ban role")
            if has_punishment:
                await member.remove_roles(punishment_role, reason=f"{points} penalty points")
                changes.append("➖ Removed punishment role")

        result = ", ".join(changes) if changes else "No role changes"
        logger.info(f"🎭 {member.display_name} ({points} points): {result}")
        return f"{member.display_name}: {result}"

    async def send_warning_if_needed(self, guild, member, points: int) -> Optional[str]:
        """Post a warning to the member's clan channel when points hit 2, 3 or 5."""
        if points not in WARNING_POINTS:
            return None

        config = self.settings.require(guild.id)
        role_id = user_target_role_id(member, config)
        if role_id is None:
            logger.warning(f"⚠️ {member.display_name} has no clan role, no warning sent")
            return None

        channel_id = config.warning_channels.get(role_id)
        channel = guild.get_channel(int(channel_id)) if channel_id else None
        if channel is None:
            logger.warning(f"⚠️ No warning channel for role {role_id}")
            return None

        await channel.send(warning_message(member, points))
        logger.info(f"📢 Sent {points}-point warning for {member.display_name} to #{channel.name}")
        return channel.name

    async def add_points_manually(self, guild, user_id: str, points: int) -> UserPunishment:
        member = await guild.fetch_member(int(user_id))
        user = await self.ledger.add_points(guild.id, user_id, points, MANUAL_ADD_REASON)
        await self.update_user_roles(member, user.points)
        await self.send_warning_if_needed(guild, member, user.points)
        return user

    async def remove_points_manually(self, guild, user_id: str, points: int) -> Optional[UserPunishment]:
        member = await guild.fetch_member(int(user_id))
        user = await self.ledger.remove_points(guild.id, user_id, points)
        await self.update_user_roles(member, user.points if user else 0)
        return user

    async def delete_user(self, guild, user_id: str) -> bool:
        """Wipe a user's points and strip their punishment roles."""
        deleted = await self.ledger.delete_user(guild.id, user_id)
        member = guild.get_member(int(user_id))
        if member is not None:
            await self.update_user_roles(member, 0)
        return deleted

    async def get_ranking_for_role(self, guild, role_id: str) -> List[RankingEntry]:
        """Users with points who carry the given clan role, most points first."""
        punishments = await self.ledger.get_guild_punishments(guild.id)
        ranking = []
        for user_id, user in punishments.items():
            if user.points <= 0:
                continue
            try:
                member = guild.get_member(int(user_id)) or await guild.fetch_member(int(user_id))
            except discord.NotFound:
                logger.info(f"⚠️ Cannot find user {user_id}")
                continue
            if has_role(member, role_id):
                ranking.append(RankingEntry(user_id=user_id, display_name=member.display_name, points=user.points))

        ranking.sort(key=lambda entry: entry.points, reverse=True)
        return ranking

    async def run_weekly_decay(self, guilds: Iterable) -> DecayResult:
        """Decay points once for the week and re-apply roles for everyone affected."""
        result = await self.ledger.weekly_decay()
        if not result.applied:
            return result

        for guild in guilds:
            if self.settings.get(guild.id) is None:
                continue
            for user_id, points in result.changed.get(str(guild.id), {}).items():
                try:
                    member = guild.get_member(int(user_id)) or await guild.fetch_member(int(user_id))
                    await self.update_user_roles(member, points)
                except discord.HTTPException as e:
                    logger.warning(f"⚠️ Cannot update roles for user {user_id}: {e}")

        return result
