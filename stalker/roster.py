"""Roster of clan members that OCR lines are matched against.

The roster is scoped by the requester's clan role and can be frozen into a
snapshot file so that a long-running session keeps matching the same names.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiohttp
import discord

from .config import MEMBER_FETCH_ATTEMPTS
from .models import RosterEntry, RosterSnapshot
from .timeutils import now_iso


logger = logging.getLogger(__name__)


def has_role(member, role_id) -> bool:
    """Whether a member carries the role with this id."""
    return any(str(role.id) == str(role_id) for role in getattr(member, "roles", []))


def find_member_clan(member, target_roles: Dict[str, str]) -> Optional[Tuple[str, str]]:
    """The first configured clan whose role the member has, as (clan, role_id)."""
    for clan, role_id in target_roles.items():
        if has_role(member, role_id):
            return clan, role_id
    return None


def is_transient(error: Exception) -> bool:
    """Errors worth retrying: server side failures, rate limits and network trouble."""
    if isinstance(error, (discord.NotFound, discord.Forbidden)):
        return False
    if isinstance(error, discord.HTTPException):
        return error.status >= 500 or error.status == 429
    return isinstance(error, (asyncio.TimeoutError, aiohttp.ClientError, ConnectionError))


async def fetch_members(guild, attempts: int = MEMBER_FETCH_ATTEMPTS) -> list:
    """Fetch all guild members, retrying transient failures with 1s/2s/4s backoff."""
    delay = 1
    for attempt in range(1, attempts + 1):
        try:
            return await guild.chunk()
        except Exception as e:
            if not is_transient(e) or attempt == attempts:
                raise
            logger.warning(f"⚠️ Member fetch failed (attempt {attempt}/{attempts}): {e}, retrying in {delay}s")
            await asyncio.sleep(delay)
            delay *= 2
    return []


async def get_roster(guild, requester, target_roles: Dict[str, str], clan: Optional[str] = None) -> List[RosterEntry]:
    """Members sharing the requester's clan role, or the given clan's role."""
    if clan is not None:
        role_id = target_roles.get(clan)
    else:
        found = find_member_clan(requester, target_roles)
        role_id = found[1] if found else None

    if not role_id:
        logger.info("❌ Requester has none of the target roles")
        return []

    members = await fetch_members(guild)
    roster = [
        RosterEntry(user_id=str(member.id), display_name=member.display_name)
        for member in members
        if has_role(member, role_id)
    ]
    logger.info(f"👥 Found {len(roster)} members with role {role_id}")
    return roster


async def save_snapshot(guild, requester, path: Path, target_roles: Dict[str, str],
                        clan: Optional[str] = None) -> bool:
    """Freeze the current roster into a JSON file. Returns False if it could not be built."""
    try:
        roster = await get_roster(guild, requester, target_roles, clan)
    except (discord.HTTPException, discord.ClientException, asyncio.TimeoutError, aiohttp.ClientError) as e:
        logger.error(f"❌ Could not fetch members for snapshot: {e}")
        return False

    if not roster:
        return False

    snapshot = RosterSnapshot(
        timestamp=now_iso(),
        guild_id=str(guild.id),
        user_id=str(requester.id),
        members=roster,
    )
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(path.write_text, json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False), "utf-8")
    logger.info(f"📸 Saved roster snapshot with {snapshot.count} members: {path.name}")
    return True


def load_snapshot(path: Optional[Path]) -> Optional[RosterSnapshot]:
    """Read a snapshot file, or None if it is missing or unreadable."""
    if not path:
        return None
    try:
        with Path(path).open("r", encoding="utf-8") as f:
            return RosterSnapshot.from_dict(json.load(f))
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError) as e:
        logger.warning(f"⚠️ Unreadable roster snapshot {path}: {e}")
        return None


def delete_snapshot(path: Optional[Path]) -> bool:
    """Remove a snapshot file. Deleting a missing file is not an error."""
    if not path:
        return False
    try:
        Path(path).unlink()
        logger.info(f"🗑️ Deleted roster snapshot: {Path(path).name}")
        return True
    except FileNotFoundError:
        return False


async def resolve_roster(guild, requester, target_roles: Dict[str, str],
                         snapshot_path: Optional[Path] = None, clan: Optional[str] = None) -> List[RosterEntry]:
    """Roster from the session snapshot, falling back to a live fetch."""
    snapshot = load_snapshot(snapshot_path)
    if snapshot is not None:
        return snapshot.members
    return await get_roster(guild, requester, target_roles, clan)
