"""Main entry point for the Stalker Discord bot."""

import os
import sys
import asyncio
import logging
from pathlib import Path

import discord
from discord.ext import commands
from dotenv import load_dotenv

# stalker.config reads the environment at import time
load_dotenv()

from error_handler import ErrorHandler
from log_webhook import WebhookLogHandler
from stalker.context import build_context

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('stalker.log', encoding='utf-8')
    ]
)
logger = logging.getLogger(__name__)

EXTENSIONS = (
    ('stalker.commands', "phase commands", True),
    ('stalker.admin_commands', "admin commands", False),
    ('stalker.scheduler', "maintenance scheduler", False),
)


def load_or_prompt_env():
    """Load environment variables or prompt for token if missing."""
    token = os.getenv('DISCORD_TOKEN')
    if not token:
        logger.warning("DISCORD_TOKEN not found in .env file")
        token = input("Please enter your Discord bot token: ").strip()

        if not token:
            logger.error("No token provided. Exiting.")
            sys.exit(1)

        # Save token to .env file
        env_path = Path('.env')
        with env_path.open('a') as f:
            f.write(f"\nDISCORD_TOKEN={token}\n")
        logger.info("Token saved to .env file")

    return token


def setup_webhook_logging():
    """Attach the webhook log handler when DISCORD_LOG_WEBHOOK_URL is set."""
    url = os.getenv('DISCORD_LOG_WEBHOOK_URL')
    if not url:
        logger.info("DISCORD_LOG_WEBHOOK_URL not set - webhook logging disabled")
        return None

    handler = WebhookLogHandler(url)
    handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    logging.getLogger().addHandler(handler)
    return handler


class StalkerBot(commands.Bot):
    """The main Stalker bot class."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.members = True  # roster lookups by clan role
        intents.message_content = True  # screenshot intake

        super().__init__(
            command_prefix='!',  # Unused but required
            intents=intents,
            description="Clan score ingestion from result screenshots and punishment points"
        )

        owner_id = int(os.getenv('BOT_OWNER_ID', '0'))
        self.error_handler = ErrorHandler(self, owner_id)
        self.context = build_context(self)
        self.log_handler = None

    async def setup_hook(self):
        """Setup hook called when the bot is ready."""
        logger.info("Setting up Stalker bot...")

        self.log_handler = setup_webhook_logging()
        if self.log_handler is not None:
            self.log_handler.start()

        for extension, label, required in EXTENSIONS:
            try:
                await self.load_extension(extension)
                logger.info(f"Loaded {label}")
            except commands.ExtensionError as e:
                await self.error_handler.notify_owner(f"Failed to load {label}", str(e), e)
                logger.error(f"Failed to load {label}: {e}")
                if required:
                    raise

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} command(s)")
        except discord.HTTPException as e:
            await self.error_handler.notify_owner("Failed to sync commands", str(e), e)
            logger.error(f"Failed to sync commands: {e}")

        self.tree.on_error = self.on_app_command_error

    async def on_ready(self):
        """Called when the bot is ready."""
        logger.info(f"Stalker bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guild(s)")

        configured = self.context.settings.configured_guild_ids()
        for guild in self.guilds:
            if str(guild.id) not in configured:
                logger.warning(f"⚠️ Guild {guild.name} ({guild.id}) is not configured in servers.json")

        try:
            activity = discord.Game(name="Stalker | /phase1")
            await self.change_presence(activity=activity)

            await self.error_handler.send_startup_notification()
        except discord.HTTPException as e:
            logger.error(f"Error in on_ready: {e}")

    async def on_app_command_error(self, interaction, error):
        """Handle application command errors."""
        await self.error_handler.handle_interaction_error(interaction, error)

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors."""
        exc_type, exc_value, exc_traceback = sys.exc_info()
        if exc_value:
            context = {"event": event, "args": str(args)[:500]}
            await self.error_handler.notify_owner(f"Bot Error in {event}", str(context), exc_value)

        logger.error(f"Bot error in event {event}", exc_info=True)

    async def close(self):
        """Clean shutdown."""
        logger.info("Shutting down Stalker bot...")
        await self.error_handler.notify_owner("Bot Shutdown", "Stalker bot is shutting down normally")
        for session_id in list(self.context.sessions.sessions):
            await self.context.sessions.cleanup_session(session_id)
        if self.log_handler is not None:
            logging.getLogger().removeHandler(self.log_handler)
            await self.log_handler.stop()
        await super().close()


async def main():
    """Main function to run the bot."""
    token = load_or_prompt_env()
    bot = StalkerBot()
    try:
        await bot.start(token)
    except discord.LoginFailure as e:
        logger.error(f"Login failed: {e}")
        raise
    finally:
        if not bot.is_closed():
            await bot.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
