"""Services shared by the cogs and the scheduler."""

import logging
from dataclasses import dataclass

from .config import PHASE_TEMP_DIR, ServerSettings
from .ledger import PunishmentLedger
from .notifications import NotificationManager
from .punishments import PunishmentService
from .queue import QueueCoordinator
from .recognizer import TextRecognizer
from .sessions import SessionManager
from .storage import ResultsStore


logger = logging.getLogger(__name__)


@dataclass
class BotContext:
    settings: ServerSettings
    store: ResultsStore
    ledger: PunishmentLedger
    punishments: PunishmentService
    notifications: NotificationManager
    queue: QueueCoordinator
    sessions: SessionManager
    recognizer: TextRecognizer


def build_context(bot, settings: ServerSettings = None) -> BotContext:
    """Wire up stores, queue and sessions for one bot instance."""
    if settings is None:
        settings = ServerSettings()
        settings.load()

    ledger = PunishmentLedger()
    notifications = NotificationManager(bot)
    queue = QueueCoordinator(notifications)
    recognizer = TextRecognizer()
    sessions = SessionManager(
        queue, recognizer, temp_dir=PHASE_TEMP_DIR,
        on_expired=notifications.send_session_expired,
    )
    logger.info("✅ Bot services initialized")
    return BotContext(
        settings=settings,
        store=ResultsStore(),
        ledger=ledger,
        punishments=PunishmentService(ledger, settings),
        notifications=notifications,
        queue=queue,
        sessions=sessions,
        recognizer=recognizer,
    )
