"""Per-guild admission control for ingestion sessions.

One user at a time may run the image pipeline in a guild. Everyone else
waits in a FIFO queue; when the slot frees up the queue head gets a
five minute reservation to claim it, and is notified out of band.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol

from .config import RESERVATION_SECONDS
from .models import QueueEntry, Reservation


logger = logging.getLogger(__name__)


@dataclass
class Admission:
    """Outcome of asking for the guild's processing slot."""
    admitted: bool
    position: Optional[int] = None


@dataclass
class QueueInfo:
    """What a waiting user is told about the queue."""
    position: int
    queue_length: int
    active_user_id: Optional[str]
    ahead: List[str]


@dataclass
class GuildQueueState:
    active_user_id: Optional[str] = None
    waiting: List[QueueEntry] = field(default_factory=list)
    reservation: Optional[Reservation] = None
    expiry_handle: Optional[asyncio.TimerHandle] = None

    def is_idle(self) -> bool:
        return self.active_user_id is None and not self.waiting and self.reservation is None


class QueueNotifier(Protocol):
    """Out-of-band delivery of queue events, usually DMs."""

    async def notify_turn(self, guild_id: str, user_id: str, expires_at: float) -> None: ...

    async def notify_position(self, guild_id: str, user_id: str, info: QueueInfo) -> None: ...

    async def notify_turn_lost(self, guild_id: str, user_id: str) -> None: ...


class QueueCoordinator:
    """Single active slot plus waiting queue, per guild."""

    def __init__(self, notifier: QueueNotifier, clock: Callable[[], float] = time.time,
                 reservation_seconds: float = RESERVATION_SECONDS):
        self.notifier = notifier
        self.clock = clock
        self.reservation_seconds = reservation_seconds
        self.guilds: Dict[str, GuildQueueState] = {}
        self._tasks = set()

    def _state(self, guild_id: str) -> GuildQueueState:
        return self.guilds.setdefault(str(guild_id), GuildQueueState())

    def _forget_if_idle(self, guild_id: str):
        state = self.guilds.get(str(guild_id))
        if state is not None and state.is_idle():
            del self.guilds[str(guild_id)]

    def is_active(self, guild_id: str) -> bool:
        state = self.guilds.get(str(guild_id))
        return state is not None and state.active_user_id is not None

    def active_processor(self, guild_id: str) -> Optional[str]:
        state = self.guilds.get(str(guild_id))
        return state.active_user_id if state else None

    def queue_length(self, guild_id: str) -> int:
        state = self.guilds.get(str(guild_id))
        return len(state.waiting) if state else 0

    @staticmethod
    def _head_is_reserved(state: GuildQueueState) -> bool:
        return (state.reservation is not None and bool(state.waiting)
                and state.waiting[0].user_id == state.reservation.user_id)

    def position(self, guild_id: str, user_id: str) -> Optional[int]:
        """Queue position, or None if the user is not waiting.

        A reservation holder stays at the head with position 0 and the
        people behind it count from 1.
        """
        state = self.guilds.get(str(guild_id))
        if not state:
            return None
        offset = 0 if self._head_is_reserved(state) else 1
        for index, entry in enumerate(state.waiting):
            if entry.user_id == str(user_id):
                return index + offset
        return None

    def reservation(self, guild_id: str) -> Optional[Reservation]:
        state = self.guilds.get(str(guild_id))
        return state.reservation if state else None

    def has_reservation(self, guild_id: str, user_id: str) -> bool:
        """Whether the user holds an unexpired reservation."""
        reservation = self.reservation(guild_id)
        return (reservation is not None
                and reservation.user_id == str(user_id)
                and reservation.expires_at > self.clock())

    def queue_info(self, guild_id: str, user_id: str) -> QueueInfo:
        state = self.guilds.get(str(guild_id)) or GuildQueueState()
        position = self.position(guild_id, user_id) or 0
        start = 1 if self._head_is_reserved(state) else 0
        ahead = [entry.user_id for entry in state.waiting[start:start + max(position - 1, 0)]]
        return QueueInfo(
            position=position,
            queue_length=len(state.waiting),
            active_user_id=state.active_user_id,
            ahead=ahead,
        )

    async def try_admit(self, guild_id: str, user_id: str) -> Admission:
        """Give the user the slot, or queue them and report their position."""
        guild_id, user_id = str(guild_id), str(user_id)
        state = self._state(guild_id)

        if state.active_user_id == user_id:
            return Admission(admitted=True)

        if state.active_user_id is None:
            reservation = state.reservation
            if reservation is None or reservation.user_id == user_id or reservation.expires_at <= self.clock():
                self.remove_from_queue(guild_id, user_id)
                state = self._state(guild_id)
                state.active_user_id = user_id
                logger.info(f"🔒 User {user_id} locked processing for guild {guild_id}")
                return Admission(admitted=True)

        if self.position(guild_id, user_id) is None:
            state.waiting.append(QueueEntry(user_id=user_id, added_at=self.clock()))
            position = self.position(guild_id, user_id)
            logger.info(f"➕ User {user_id} added to queue (position: {position}) for guild {guild_id}")
            await self.notifier.notify_position(guild_id, user_id, self.queue_info(guild_id, user_id))
        else:
            logger.warning(f"⚠️ User {user_id} is already in queue for guild {guild_id}")

        return Admission(admitted=False, position=self.position(guild_id, user_id))

    async def release(self, guild_id: str, user_id: str):
        """Free the slot held by ``user_id`` and hand a reservation to the next waiter.

        Releasing on behalf of anyone but the active user does nothing.
        """
        guild_id, user_id = str(guild_id), str(user_id)
        state = self.guilds.get(guild_id)
        if state is None:
            return
        if state.active_user_id != user_id:
            logger.info(f"⏭️ User {user_id} does not hold the slot in guild {guild_id}, nothing to release")
            return

        state.active_user_id = None
        logger.info(f"🔓 Unlocked processing for guild {guild_id}")

        if state.waiting:
            await self._promote_head(guild_id)
        else:
            self._cancel_reservation(state)
            self._forget_if_idle(guild_id)

    async def expire_reservation(self, guild_id: str, user_id: str):
        """Drop a waiter who did not claim their turn and move on to the next one."""
        guild_id, user_id = str(guild_id), str(user_id)
        state = self.guilds.get(guild_id)
        if state is None:
            return
        if state.reservation is not None and state.reservation.user_id != user_id:
            return

        self._cancel_reservation(state)
        logger.warning(f"⏰ Reservation expired for user {user_id}")

        if self.position(guild_id, user_id) is not None:
            state.waiting = [entry for entry in state.waiting if entry.user_id != user_id]
            logger.info(f"➖ User {user_id} removed from queue (timeout)")
            await self.notifier.notify_turn_lost(guild_id, user_id)

        if state.waiting and state.active_user_id is None:
            await self._promote_head(guild_id)
        else:
            self._forget_if_idle(guild_id)

    def remove_from_queue(self, guild_id: str, user_id: str):
        """Clear the user's reservation and queue entry once they start."""
        guild_id, user_id = str(guild_id), str(user_id)
        state = self.guilds.get(guild_id)
        if state is None:
            return

        if state.reservation is not None and state.reservation.user_id == user_id:
            self._cancel_reservation(state)
            logger.info(f"✅ Removed reservation for user {user_id}")

        before = len(state.waiting)
        state.waiting = [entry for entry in state.waiting if entry.user_id != user_id]
        if len(state.waiting) != before:
            logger.info(f"➖ User {user_id} removed from queue (started using)")

        self._forget_if_idle(guild_id)

    async def _promote_head(self, guild_id: str):
        state = self.guilds[guild_id]
        head = state.waiting[0]
        logger.info(f"📢 Next person in queue: {head.user_id}")

        self._cancel_reservation(state)
        expires_at = self.clock() + self.reservation_seconds
        state.reservation = Reservation(user_id=head.user_id, expires_at=expires_at)
        state.expiry_handle = self._schedule_expiry(guild_id, head.user_id)

        await self.notifier.notify_turn(guild_id, head.user_id, expires_at)
        for entry in state.waiting[1:]:
            await self.notifier.notify_position(guild_id, entry.user_id, self.queue_info(guild_id, entry.user_id))

    def _schedule_expiry(self, guild_id: str, user_id: str) -> Optional[asyncio.TimerHandle]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        return loop.call_later(self.reservation_seconds, self._spawn_expiry, guild_id, user_id)

    def _spawn_expiry(self, guild_id: str, user_id: str):
        task = asyncio.ensure_future(self.expire_reservation(guild_id, user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    def _cancel_reservation(state: GuildQueueState):
        if state.expiry_handle is not None:
            state.expiry_handle.cancel()
            state.expiry_handle = None
        state.reservation = None
