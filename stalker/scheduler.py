"""Scheduled maintenance: weekly punishment decay and scratch file cleanup."""

import asyncio
import logging
from datetime import time
from pathlib import Path
from typing import Iterable

from discord.ext import commands, tasks

from .config import MAX_PROCESSED_FILES, PROCESSED_DIR, TEMP_DIR, TEMP_FILE_MAX_AGE_HOURS
from .exceptions import StorageError
from .imaging import cleanup_processed_images
from .timeutils import get_timezone, hours_since, now


logger = logging.getLogger(__name__)


def cleanup_temp_files(directory: Path, max_age_hours: float, keep_ids: Iterable[str] = ()) -> int:
    """Delete scratch files older than ``max_age_hours``, except those of live sessions."""
    directory = Path(directory)
    if not directory.is_dir():
        return 0

    removed = 0
    for path in directory.rglob("*"):
        if not path.is_file():
            continue
        if any(session_id in path.name for session_id in keep_ids):
            continue
        try:
            if hours_since(path.stat().st_mtime) > max_age_hours:
                path.unlink()
                removed += 1
        except FileNotFoundError:
            continue
    return removed


class MaintenanceScheduler:
    """Runs the Monday punishment decay and the nightly temp cleanup."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.context = bot.context

        self.weekly_decay.start()
        self.temp_cleanup.start()

    def cog_unload(self):
        """Clean shutdown of the scheduler."""
        self.weekly_decay.cancel()
        self.temp_cleanup.cancel()

    @tasks.loop(time=time(hour=0, minute=0, tzinfo=get_timezone()))
    async def weekly_decay(self):
        """Remove one punishment point from everyone, once per week on Monday."""
        if now().weekday() != 0:
            return
        logger.info("⏰ Starting weekly punishment point removal...")
        try:
            result = await self.context.punishments.run_weekly_decay(self.bot.guilds)
        except StorageError as e:
            logger.error(f"💥 Weekly punishment point removal failed: {e}")
            return

        if result.applied:
            logger.info(f"✅ Weekly removal finished for {result.week_key}: {result.cleaned_users} user(s)")
        else:
            logger.info(f"⏭️ Weekly removal already done for {result.week_key}")

    @tasks.loop(time=time(hour=2, minute=0, tzinfo=get_timezone()))
    async def temp_cleanup(self):
        """Delete stale scratch files and trim the processed image folder."""
        live = list(self.context.sessions.sessions)
        removed = await asyncio.to_thread(cleanup_temp_files, TEMP_DIR, TEMP_FILE_MAX_AGE_HOURS, live)
        if removed:
            logger.info(f"🧹 Removed {removed} stale temp file(s)")
        await asyncio.to_thread(cleanup_processed_images, PROCESSED_DIR, MAX_PROCESSED_FILES)

    @weekly_decay.before_loop
    async def before_weekly_decay(self):
        await self.bot.wait_until_ready()
        logger.info("Weekly decay scheduler initialized")

    @temp_cleanup.before_loop
    async def before_temp_cleanup(self):
        await self.bot.wait_until_ready()


async def setup(bot: commands.Bot):
    """Setup function to add the scheduler to the bot."""
    scheduler = MaintenanceScheduler(bot)
    # Store reference so it doesn't get garbage collected
    bot.maintenance_scheduler = scheduler
