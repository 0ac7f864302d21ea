"""Punishment points ledger with weekly decay.

``punishments.json`` maps guild id → user id → {points, history}; users are
removed as soon as their points reach zero. ``weekly_removal.json`` holds one
marker per decay week so the decay runs at most once per week, even when
several bot processes share the data directory.
"""

import asyncio
import datetime
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .config import PUNISHMENTS_FILE, WEEKLY_REMOVAL_FILE
from .exceptions import StorageError
from .models import DecayMarker, HistoryEntry, UserPunishment
from .storage import read_json, write_json
from .timeutils import decay_week_key, now, now_iso


logger = logging.getLogger(__name__)

DEFAULT_REASON = "Failure to defeat the boss"
MANUAL_REMOVAL_REASON = "Manual removal"
DECAY_REASON = "Automatic weekly removal of 1 point"


@dataclass
class DecayResult:
    """What one weekly decay run did."""
    week_key: str
    applied: bool
    # guild id -> user id -> points left after the decay
    changed: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def cleaned_users(self) -> int:
        return sum(len(users) for users in self.changed.values())


class PunishmentLedger:
    """Reads and writes the punishment and decay marker files."""

    def __init__(self, punishments_path: Path = PUNISHMENTS_FILE,
                 weekly_removal_path: Path = WEEKLY_REMOVAL_FILE):
        self.punishments_path = Path(punishments_path)
        self.weekly_removal_path = Path(weekly_removal_path)
        self._lock = asyncio.Lock()

    async def _load(self, path: Path) -> dict:
        try:
            data = await asyncio.to_thread(read_json, path)
        except (OSError, ValueError) as e:
            logger.error(f"💥 Failed to read {path}: {e}")
            raise StorageError(str(path), str(e)) from e
        return data or {}

    async def _load_punishments(self) -> Dict[str, Dict[str, UserPunishment]]:
        raw = await self._load(self.punishments_path)
        return {
            guild_id: {user_id: UserPunishment.from_dict(user) for user_id, user in users.items()}
            for guild_id, users in raw.items()
        }

    async def _save_punishments(self, punishments: Dict[str, Dict[str, UserPunishment]]):
        raw = {
            guild_id: {user_id: user.to_dict() for user_id, user in users.items()}
            for guild_id, users in punishments.items()
        }
        await asyncio.to_thread(write_json, self.punishments_path, raw)

    async def _load_markers(self) -> Dict[str, DecayMarker]:
        raw = await self._load(self.weekly_removal_path)
        return {key: DecayMarker.from_dict(value) for key, value in raw.items()}

    async def get_user(self, guild_id: str, user_id: str) -> Optional[UserPunishment]:
        """A user's record, or None if they have no points."""
        punishments = await self._load_punishments()
        return punishments.get(str(guild_id), {}).get(str(user_id))

    async def get_guild_punishments(self, guild_id: str) -> Dict[str, UserPunishment]:
        punishments = await self._load_punishments()
        return punishments.get(str(guild_id), {})

    async def add_points(self, guild_id: str, user_id: str, points: int,
                         reason: str = DEFAULT_REASON) -> UserPunishment:
        """Add points to a user, creating the record if needed."""
        if points <= 0:
            raise ValueError(f"points must be positive, got {points}")

        guild_id, user_id = str(guild_id), str(user_id)
        async with self._lock:
            punishments = await self._load_punishments()
            user = punishments.setdefault(guild_id, {}).setdefault(user_id, UserPunishment())

            old_points = user.points
            user.points += points
            user.history.append(HistoryEntry(points=points, reason=reason, date=now_iso()))

            await self._save_punishments(punishments)

        logger.info(f"📊 User {user_id} in guild {guild_id}: {old_points} -> {user.points} points ({reason})")
        return user

    async def remove_points(self, guild_id: str, user_id: str, points: int) -> Optional[UserPunishment]:
        """Take points away, never below zero. Returns None if the user had no record.

        A user left with zero points is removed from the ledger; the returned
        record then shows ``points == 0``.
        """
        if points <= 0:
            raise ValueError(f"points must be positive, got {points}")

        guild_id, user_id = str(guild_id), str(user_id)
        async with self._lock:
            punishments = await self._load_punishments()
            user = punishments.get(guild_id, {}).get(user_id)
            if user is None:
                return None

            old_points = user.points
            user.points = max(0, user.points - points)
            user.history.append(HistoryEntry(points=-points, reason=MANUAL_REMOVAL_REASON, date=now_iso()))

            if user.points == 0:
                del punishments[guild_id][user_id]
                logger.info(f"🗑️ User {user_id} removed from ledger (0 points)")

            await self._save_punishments(punishments)

        logger.info(f"📊 User {user_id} in guild {guild_id}: {old_points} -> {user.points} points (manual removal)")
        return user

    async def delete_user(self, guild_id: str, user_id: str) -> bool:
        """Drop a user's record entirely. Returns False if there was none."""
        guild_id, user_id = str(guild_id), str(user_id)
        async with self._lock:
            punishments = await self._load_punishments()
            if user_id not in punishments.get(guild_id, {}):
                return False
            del punishments[guild_id][user_id]
            await self._save_punishments(punishments)

        logger.info(f"🗑️ Deleted punishment record of user {user_id} in guild {guild_id}")
        return True

    async def weekly_decay(self, moment: Optional[datetime.datetime] = None) -> DecayResult:
        """Remove one point from everyone, once per week."""
        moment = moment or now()
        week_key = decay_week_key(moment)
        logger.info(f"📅 Checking weekly decay for {week_key}")

        async with self._lock:
            markers = await self._load_markers()
            if week_key in markers:
                logger.info("⏭️ Points were already removed this week")
                return DecayResult(week_key=week_key, applied=False)

            punishments = await self._load_punishments()
            result = DecayResult(week_key=week_key, applied=True)
            stamp = now_iso()

            for guild_id, users in punishments.items():
                for user_id in list(users):
                    user = users[user_id]
                    if user.points <= 0:
                        continue
                    old_points = user.points
                    user.points = max(0, old_points - 1)
                    user.history.append(HistoryEntry(points=-1, reason=DECAY_REASON, date=stamp))
                    result.changed.setdefault(guild_id, {})[user_id] = user.points
                    logger.info(f"➖ User {user_id}: {old_points} -> {user.points} points")
                    if user.points == 0:
                        del users[user_id]
                        logger.info(f"🗑️ User {user_id} removed from ledger (0 points)")

            # Another process may have stamped this week while we were working.
            markers = await self._load_markers()
            if week_key in markers:
                logger.info("⏭️ Weekly decay was applied concurrently, discarding this run")
                return DecayResult(week_key=week_key, applied=False)

            markers[week_key] = DecayMarker(date=stamp, cleaned_users=result.cleaned_users)
            await self._save_punishments(punishments)
            await asyncio.to_thread(
                write_json, self.weekly_removal_path, {key: m.to_dict() for key, m in markers.items()}
            )

        logger.info(f"✅ Weekly decay finished for {week_key}: {result.cleaned_users} user(s) updated")
        return result
