"""Embeds and button rows for the ingestion workflow, queue and punishments."""

from datetime import datetime
from typing import Dict, List, Optional

import discord

from .config import PHASE2_ROUNDS, SESSION_TIMEOUT_SECONDS, ServerConfig
from .models import (
    AvailableWeek, Conflict, Phase1Record, Phase2Record, RankingEntry,
    SessionStatistics, WeekInfo, WeekSummary,
)
from .queue import QueueInfo
from .sessions import ProgressUpdate, Session

PROGRESS_BAR_LENGTH = 20
RESULT_BAR_LENGTH = 16
MAX_RESOLVE_BUTTONS = 5
STAGE_ICONS = {
    "loading": "📥",
    "ocr": "🔍",
    "extracting": "📊",
    "aggregating": "🔄",
}


def format_error(message: str) -> discord.Embed:
    """Format an error message."""
    return discord.Embed(title="❌ Error", description=message, color=0xff0000)


def format_success(message: str) -> discord.Embed:
    """Format a success message."""
    return discord.Embed(title="✅ Success", description=message, color=0x00ff00)


def button_row(*buttons) -> discord.ui.View:
    """A persistent view of (custom_id, label, style) buttons.

    Clicks are routed by custom id from the cog's interaction listener.
    """
    view = discord.ui.View(timeout=None)
    for custom_id, label, style in buttons:
        view.add_item(discord.ui.Button(custom_id=custom_id, label=label, style=style))
    return view


def progress_bar(percent: int) -> str:
    filled = round(percent / 5)
    return "█" * filled + "░" * (PROGRESS_BAR_LENGTH - filled)


def result_lines(results: Dict[str, int]) -> str:
    """Ranked 'bar position. nick - score' lines, highest score first."""
    ranked = sorted(results.items(), key=lambda item: item[1], reverse=True)
    max_score = ranked[0][1] if ranked and ranked[0][1] > 0 else 1
    lines = []
    for position, (nick, score) in enumerate(ranked, start=1):
        if score > 0:
            filled = max(1, round(score / max_score * RESULT_BAR_LENGTH))
            bar = "█" * filled + "░" * (RESULT_BAR_LENGTH - filled)
        else:
            bar = "░" * RESULT_BAR_LENGTH
        lines.append(f"{bar} {position}. {nick} - {score:,}")
    return "\n".join(lines)


def _truncate(text: str, limit: int = 3900) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rsplit("\n", 1)[0] + "\n…"


def phase_title(session: Session) -> str:
    if session.phase == 2:
        return f"Phase 2 - Round {session.current_round}/{PHASE2_ROUNDS}"
    return "Phase 1"


# ---- session workflow -------------------------------------------------------

def awaiting_images(phase: int, week: WeekInfo, round_number: Optional[int] = None):
    """Prompt for screenshots, with a cancel button."""
    expires = int(datetime.now().timestamp() + SESSION_TIMEOUT_SECONDS)
    title = f"📸 Phase {phase} - Submit result screenshots"
    if phase == 2 and round_number:
        title = f"📸 Phase 2 - Round {round_number}/{PHASE2_ROUNDS} - Submit result screenshots"

    embed = discord.Embed(
        title=title,
        description=(
            f"📅 **Week:** {week.week_number}/{week.year}\n\n"
            "**⚠️ IMPORTANT - Screenshot guidelines:**\n"
            "• Take screenshots **straight and carefully**\n"
            "• More screenshots (up to 10) improve read quality\n"
            "• If a nick appears **at least 2x**, it increases data confidence\n"
            "• Avoid blurry or skewed images\n\n"
            "**You can submit from 1 to 10 images in one message.**\n\n"
            f"⏱️ Expiration time: <t:{expires}:R>"
        ),
        color=0x0099ff,
        timestamp=discord.utils.utcnow(),
    )
    embed.set_footer(text="Submit images via a regular message in this channel")
    view = button_row((f"phase{phase}_cancel_session", "❌ Cancel", discord.ButtonStyle.danger))
    return embed, view


def progress(session: Session, update: ProgressUpdate) -> discord.Embed:
    counts = session.progress_counts()
    icon = STAGE_ICONS.get(update.stage, "⚙️")
    embed = discord.Embed(
        title=f"🔄 Processing images - {phase_title(session)}",
        description=(
            f"**Image:** {update.current_image}/{update.total_images}\n"
            f"{icon} {update.action}\n"
            f"{progress_bar(update.percent)} {update.percent}%"
        ),
        color=0xffa500,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name="👥 Unique nicks", value=str(counts.unique_nicks), inline=True)
    embed.add_field(name="✅ Confirmed", value=str(counts.confirmed), inline=True)
    embed.add_field(name="❓ Unconfirmed", value=str(counts.unconfirmed), inline=True)
    embed.add_field(name="⚠️ Conflicts", value=str(counts.conflicts), inline=True)
    embed.add_field(name="🥚 Players with zero", value=str(counts.with_zero), inline=True)
    embed.set_footer(text="Processing...")
    return embed


def processed_images(processed: int, total: int, phase: int):
    """Ask whether all screenshots were sent."""
    embed = discord.Embed(
        title="✅ Images processed",
        description=f"Processed **{processed}** images.\nTotal in session: **{total}** images.",
        color=0x00ff00,
        timestamp=discord.utils.utcnow(),
    )
    view = button_row(
        (f"phase{phase}_complete_yes", "✅ Yes, analyze", discord.ButtonStyle.success),
        (f"phase{phase}_complete_no", "➕ Add more", discord.ButtonStyle.primary),
    )
    return embed, view


def conflict(item: Conflict, index: int, total: int, phase: int):
    """One conflict with a button per candidate value."""
    values_text = "\n".join(f"• **{v.value}** ({v.count}x)" for v in item.values)
    embed = discord.Embed(
        title=f"❓ Conflict {index}/{total}",
        description=f"**Nick:** {item.nick}\n\n**Read values:**\n{values_text}\n\nWhich value is correct?",
        color=0xffa500,
        timestamp=discord.utils.utcnow(),
    )
    embed.set_footer(text=f"Resolving conflicts • {index} of {total}")
    view = button_row(*[
        (f"phase{phase}_resolve_{item.nick}_{v.value}", str(v.value), discord.ButtonStyle.secondary)
        for v in item.values[:MAX_RESOLVE_BUTTONS]
    ])
    return embed, view


def final_summary(stats: SessionStatistics, week: WeekInfo, clan_name: str, phase: int,
                  results: Optional[Dict[str, int]] = None, total_zero_count: Optional[int] = None):
    """Summary before saving, with confirm and cancel buttons."""
    embed = discord.Embed(
        title=f"📊 Phase {phase} Summary - Week {week.week_number}/{week.year}",
        description="Analyzed all images and resolved conflicts.",
        color=0x00ff00,
        timestamp=discord.utils.utcnow(),
    )
    if phase == 1:
        if results is not None:
            embed.description = _truncate(
                f"**Clan:** {clan_name}\n**Week:** {week.week_number}/{week.year}\n"
                f"**TOP30:** {stats.top30_sum:,} pts\n\n{result_lines(results)}"
            ) + "\n\n✅ Analyzed all images and resolved conflicts."
        embed.add_field(name="✅ Unique nicks", value=str(stats.unique_nicks), inline=True)
        embed.add_field(name="📈 Score above 0", value=f"{stats.above_zero} people", inline=True)
        embed.add_field(name="⭕ Score equal to 0", value=f"{stats.zero_count} people", inline=True)
        embed.add_field(name="🏆 TOP30 score sum", value=f"{stats.top30_sum:,} points", inline=False)
    elif total_zero_count is not None:
        embed.add_field(name=f"⭕ Score = 0 (sum from {PHASE2_ROUNDS} rounds)",
                        value=f"{total_zero_count} occurrences", inline=False)
    embed.add_field(name="🎯 Analyzed clan", value=clan_name, inline=False)
    embed.set_footer(text="Confirm and save data?")

    view = button_row(
        (f"phase{phase}_confirm_save", "🟢 Confirm", discord.ButtonStyle.success),
        (f"phase{phase}_cancel_save", "🔴 Cancel", discord.ButtonStyle.danger),
    )
    return embed, view


def round_summary(session: Session, week: WeekInfo, clan_name: str):
    """Results of the Phase 2 round that just ended, with a continue button."""
    results = session.final_results()
    stats = session.statistics()
    embed = discord.Embed(
        title=f"✅ Round {session.current_round}/{PHASE2_ROUNDS} - Summary",
        description=_truncate(
            f"**Clan:** {clan_name}\n**Week:** {week.week_number}/{week.year}\n"
            f"**TOP30:** {stats.top30_sum:,} pts\n\n{result_lines(results)}"
        ),
        color=0x00ff00,
        timestamp=discord.utils.utcnow(),
    )
    embed.set_footer(text=f"Total players: {len(results)}")
    label = "✅ Next round" if not session.is_last_round() else "✅ Show final summary"
    view = button_row(("phase2_round_continue", label, discord.ButtonStyle.success))
    return embed, view


def overwrite_warning(summary: WeekSummary, week: WeekInfo, clan_name: str, phase: int,
                      creator_name: Optional[str] = None):
    """Existing data for this week, with overwrite and cancel buttons."""
    embed = discord.Embed(
        title="⚠️ Data already exists",
        description=(f"Phase {phase} data for week **{week.week_number}/{week.year}** "
                     f"(clan: **{clan_name}**) already exists in the database."),
        color=0xff6600,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name="📅 Save date", value=summary.created_at or "unknown", inline=True)
    if creator_name:
        embed.add_field(name="👤 Added by", value=creator_name, inline=True)
    if phase == 1:
        embed.add_field(name="👥 Player count", value=str(summary.player_count), inline=True)
        embed.add_field(name="🏆 TOP30 sum", value=f"{summary.top30_sum:,} pts", inline=True)
    embed.set_footer(text="Do you want to overwrite this data?")

    view = button_row(
        (f"phase{phase}_overwrite_yes", "🔴 Overwrite old data", discord.ButtonStyle.danger),
        (f"phase{phase}_overwrite_no", "⚪ Cancel", discord.ButtonStyle.secondary),
    )
    return embed, view


def phase1_saved(stats: SessionStatistics, week: WeekInfo, clan_name: str, zero_nicks: List[str],
                 saved_by: str) -> discord.Embed:
    embed = discord.Embed(
        title="✅ Phase 1 - Data saved successfully",
        description=f"Results for week **{week.week_number}/{week.year}** have been saved.",
        color=0x00ff00,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name="👥 Unique players", value=str(stats.unique_nicks), inline=True)
    embed.add_field(name="📈 Score > 0", value=f"{stats.above_zero} people", inline=True)
    embed.add_field(name="⭕ Score = 0", value=f"{stats.zero_count} people", inline=True)
    embed.add_field(name="🏆 TOP30 sum", value=f"{stats.top30_sum:,} pts", inline=False)
    embed.add_field(name="🎯 Clan", value=clan_name, inline=False)
    if zero_nicks:
        embed.add_field(name="📋 Players with score 0", value=_truncate(", ".join(zero_nicks), 1000), inline=False)
    embed.set_footer(text=f"Saved by {saved_by}")
    return embed


def phase2_saved(total_zero_count: int, week: WeekInfo, clan_name: str, saved_by: str) -> discord.Embed:
    embed = discord.Embed(
        title="✅ Phase 2 - Data saved successfully",
        description=f"Results for week **{week.week_number}/{week.year}** have been saved.",
        color=0x00ff00,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name=f"⭕ Score = 0 (sum from {PHASE2_ROUNDS} rounds)",
                    value=f"{total_zero_count} occurrences", inline=False)
    embed.add_field(name="🎯 Clan", value=clan_name, inline=False)
    embed.set_footer(text=f"Saved by {saved_by}")
    return embed


def session_expired() -> discord.Embed:
    return discord.Embed(
        title="⏰ Session expired",
        description=("❌ Session expired due to inactivity. Try again.\n\n"
                     "Discord interaction expired (max 15 minutes). Data was not saved."),
        color=0xff0000,
        timestamp=discord.utils.utcnow(),
    )


# ---- queue ------------------------------------------------------------------

def _ahead_lines(names: List[str]) -> str:
    lines = [f"{i}. **{name}**" for i, name in enumerate(names[:3], start=1)]
    if len(names) > 3:
        lines.append(f"... and {len(names) - 3} others")
    return "\n".join(lines)


def your_turn(expires_at: float) -> discord.Embed:
    return discord.Embed(
        title="✅ Your turn!",
        description=("You can now use the `/phase1` or `/phase2` command.\n\n"
                     f"⏱️ You have time until: <t:{int(expires_at)}:R>\n\n"
                     "⚠️ **If you don't use the command within 5 minutes, your turn will be forfeited.**"),
        color=0x00ff00,
        timestamp=discord.utils.utcnow(),
    )


def in_queue(info: QueueInfo, active_name: Optional[str], ahead_names: List[str]) -> discord.Embed:
    description = f"Your position in queue: **{info.position}**\n\n"
    if active_name:
        description += f"🔒 Currently using: **{active_name}**\n"
    if ahead_names:
        description += f"\n👥 Ahead of you in queue:\n{_ahead_lines(ahead_names)}\n"
    description += "\n✅ You'll receive a notification when it's your turn."
    return discord.Embed(title="📋 You are in queue", description=description, color=0xffa500,
                         timestamp=discord.utils.utcnow())


def turn_lost() -> discord.Embed:
    return discord.Embed(
        title="⏰ Time expired",
        description=("You didn't use the command within 5 minutes. Your turn was forfeited.\n\n"
                     "You can use the command again to join at the end of the queue."),
        color=0xff0000,
        timestamp=discord.utils.utcnow(),
    )


def queue_busy(info: QueueInfo, active_name: Optional[str], ahead_names: List[str]) -> discord.Embed:
    description = f"🔒 **Currently using:** {active_name}\n\n" if active_name else ""
    description += f"📋 **Your position in queue:** {info.position}\n"
    description += f"👥 **Total people in queue:** {info.queue_length}\n\n"
    if ahead_names:
        description += f"**People ahead of you:**\n{_ahead_lines(ahead_names)}\n\n"
    description += "✅ **You'll receive a DM notification** when it's your turn."
    return discord.Embed(title="⏳ Queue busy", description=description, color=0xffa500,
                         timestamp=discord.utils.utcnow())


# ---- stored results ---------------------------------------------------------

def week_results(record, phase: int, week: WeekInfo, clan_name: str) -> discord.Embed:
    """A stored week record, ranked."""
    if isinstance(record, Phase1Record):
        players = record.players
    else:
        players = record.summary_players
    results = {p.display_name: p.score for p in players}
    top30 = sum(sorted(results.values(), reverse=True)[:30])

    embed = discord.Embed(
        title=f"📊 Phase {phase} Results - Week {week.week_number}/{week.year}",
        description=_truncate(
            f"**Clan:** {clan_name}\n**TOP30:** {top30:,} pts\n\n{result_lines(results)}"
        ),
        color=0x0099ff,
        timestamp=discord.utils.utcnow(),
    )
    if isinstance(record, Phase2Record) and record.rounds:
        embed.add_field(name="🔁 Rounds", value=str(len(record.rounds)), inline=True)
    embed.set_footer(text=f"Players: {len(players)}")
    return embed


def available_weeks(weeks: List[AvailableWeek], phase: int, config: ServerConfig) -> discord.Embed:
    if not weeks:
        return format_error(f"No Phase {phase} results have been saved yet.")
    lines = [
        f"• **{w.week_number}/{w.year}** - {', '.join(config.clan_name(c) for c in w.clans)}"
        for w in weeks[:25]
    ]
    embed = discord.Embed(
        title=f"📅 Phase {phase} - Available weeks",
        description="\n".join(lines),
        color=0x0099ff,
    )
    embed.set_footer(text="Use /results with the week option, e.g. 41-2025")
    return embed


# ---- punishments ------------------------------------------------------------

def punishment_ranking(ranking: List[RankingEntry], config: ServerConfig, clan: str,
                       next_removal: datetime, warning_channel_id: Optional[str], timezone: str) -> discord.Embed:
    if ranking:
        lines = [
            f"{i}. {entry.display_name} - {entry.points} points {'🎭' if entry.points >= 2 else ''}".rstrip()
            for i, entry in enumerate(ranking[:10], start=1)
        ]
        ranking_text = "\n".join(lines)
    else:
        ranking_text = "No users with punishment points in this category."

    embed = discord.Embed(
        title="📊 Punishment Points Ranking",
        description=f"**Category:** {config.clan_name(clan)}\n\n{ranking_text}",
        color=0xff6b6b,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name="⏰ Next points removal", value=f"{next_removal:%Y-%m-%d} at 00:00", inline=False)
    embed.add_field(name="🎭 Punishment role (2+ points)", value=f"<@&{config.punishment_role_id}>", inline=False)
    embed.add_field(name="🚨 Lottery ban role (3+ points)", value=f"<@&{config.lottery_ban_role_id}>", inline=False)
    embed.add_field(name="📢 Warning channel",
                    value=f"<#{warning_channel_id}>" if warning_channel_id else "Channel not found", inline=False)
    embed.add_field(name="⚖️ Rules",
                    value="2+ points = punishment role\n3+ points = lottery ban\n< 2 points = no role\nWarnings: 2, 3 and 5 points",
                    inline=False)
    embed.set_footer(text=f"Category: {clan} | Every Monday at midnight, 1 point is removed from everyone ({timezone})")
    return embed
