"""Forward log records to a Discord channel through a webhook."""

import asyncio
import logging
import queue
import sys
from typing import List, Optional

import aiohttp
import discord


MAX_MESSAGE_LENGTH = 2000
WEBHOOK_DELAY = 1.0


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Split text into chunks Discord accepts, preferring line breaks."""
    chunks = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text:
        chunks.append(text)
    return chunks


class SkipWebhookRecords(logging.Filter):
    """Drops records from discord.py's webhook loggers; they are emitted while delivering."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith("discord.webhook")


class WebhookLogHandler(logging.Handler):
    """Queues formatted records; a background task posts them at most once per second.

    Records may come from worker threads, so the buffer is a thread-safe
    queue drained on the event loop. Delivery failures go to stderr only,
    never back through logging.
    """

    def __init__(self, url: str, level: int = logging.WARNING, username: str = "Stalker Logs"):
        super().__init__(level)
        self.url = url
        self.username = username
        self.pending: "queue.SimpleQueue[str]" = queue.SimpleQueue()
        self._session: Optional[aiohttp.ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self.addFilter(SkipWebhookRecords())

    def emit(self, record: logging.LogRecord):
        try:
            self.pending.put(self.format(record))
        except Exception:
            self.handleError(record)

    def start(self):
        """Start the delivery task on the running loop."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._deliver())

    async def _deliver(self):
        self._session = aiohttp.ClientSession()
        webhook = discord.Webhook.from_url(self.url, session=self._session)
        while True:
            try:
                message = self.pending.get_nowait()
            except queue.Empty:
                await asyncio.sleep(WEBHOOK_DELAY)
                continue

            for chunk in split_message(message):
                try:
                    await webhook.send(chunk, username=self.username)
                except (discord.HTTPException, aiohttp.ClientError) as e:
                    print(f"❌ Discord webhook error: {e}", file=sys.stderr)
                await asyncio.sleep(WEBHOOK_DELAY)

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session is not None:
            await self._session.close()
            self._session = None
