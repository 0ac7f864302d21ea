"""Tests for stalker/roster.py — clan rosters and snapshots."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest

from stalker.roster import (
    delete_snapshot,
    fetch_members,
    find_member_clan,
    get_roster,
    has_role,
    is_transient,
    load_snapshot,
    resolve_roster,
    save_snapshot,
)

from conftest import make_guild, make_member


TARGET_ROLES = {"main": "100", "academy": "200"}


def _http_error(cls, status: int) -> discord.HTTPException:
    response = MagicMock(status=status, reason="error")
    return cls(response, "error")


# ---------------------------------------------------------------------------
# Role helpers
# ---------------------------------------------------------------------------

class TestRoles:
    """Tests for has_role() and find_member_clan()."""

    def test_has_role_compares_as_strings(self) -> None:
        member = make_member(1, "Alpha", [100])
        assert has_role(member, "100")
        assert has_role(member, 100)
        assert not has_role(member, "200")

    def test_first_matching_clan(self) -> None:
        member = make_member(4, "Delta", [200])
        assert find_member_clan(member, TARGET_ROLES) == ("academy", "200")

    def test_no_clan(self) -> None:
        assert find_member_clan(make_member(5, "Echo"), TARGET_ROLES) is None


# ---------------------------------------------------------------------------
# Member fetching
# ---------------------------------------------------------------------------

class TestIsTransient:
    """Tests for is_transient()."""

    def test_server_errors_and_rate_limits(self) -> None:
        assert is_transient(_http_error(discord.HTTPException, 503))
        assert is_transient(_http_error(discord.HTTPException, 429))
        assert is_transient(asyncio.TimeoutError())

    def test_permanent_errors(self) -> None:
        assert not is_transient(_http_error(discord.Forbidden, 403))
        assert not is_transient(_http_error(discord.NotFound, 404))
        assert not is_transient(ValueError("bad"))


class TestFetchMembers:
    """Tests for fetch_members()."""

    async def test_retries_transient_failures(self, clan_members) -> None:
        guild = make_guild(members=clan_members)
        guild.chunk = AsyncMock(side_effect=[asyncio.TimeoutError(), clan_members])

        with patch("stalker.roster.asyncio.sleep", new=AsyncMock()) as sleep:
            members = await fetch_members(guild, attempts=3)

        assert members == clan_members
        sleep.assert_awaited_once_with(1)

    async def test_gives_up_after_last_attempt(self) -> None:
        guild = make_guild()
        guild.chunk = AsyncMock(side_effect=asyncio.TimeoutError())

        with patch("stalker.roster.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(asyncio.TimeoutError):
                await fetch_members(guild, attempts=3)

        assert guild.chunk.await_count == 3

    async def test_permanent_error_is_not_retried(self) -> None:
        guild = make_guild()
        guild.chunk = AsyncMock(side_effect=_http_error(discord.Forbidden, 403))

        with pytest.raises(discord.Forbidden):
            await fetch_members(guild)

        assert guild.chunk.await_count == 1


class TestGetRoster:
    """Tests for get_roster()."""

    async def test_requester_clan(self, clan_members) -> None:
        guild = make_guild(members=clan_members)
        roster = await get_roster(guild, clan_members[0], TARGET_ROLES)
        assert [e.display_name for e in roster] == ["Alpha", "Bravo", "Charlie"]

    async def test_explicit_clan(self, clan_members) -> None:
        guild = make_guild(members=clan_members)
        roster = await get_roster(guild, clan_members[0], TARGET_ROLES, clan="academy")
        assert [e.user_id for e in roster] == ["4"]

    async def test_requester_without_clan(self, clan_members) -> None:
        guild = make_guild(members=clan_members)
        assert await get_roster(guild, make_member(9, "Nobody"), TARGET_ROLES) == []
        guild.chunk.assert_not_awaited()


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

class TestSnapshots:
    """Tests for save_snapshot(), load_snapshot(), delete_snapshot() and resolve_roster()."""

    async def test_round_trip(self, tmp_path, clan_members) -> None:
        guild = make_guild(members=clan_members)
        path = tmp_path / "role_nicks_snapshot_s1.json"

        assert await save_snapshot(guild, clan_members[0], path, TARGET_ROLES)

        snapshot = load_snapshot(path)
        assert snapshot.count == 3
        assert snapshot.guild_id == "1"
        assert snapshot.user_id == "1"
        assert [m.display_name for m in snapshot.members] == ["Alpha", "Bravo", "Charlie"]

    async def test_resolve_prefers_snapshot(self, tmp_path, clan_members) -> None:
        guild = make_guild(members=clan_members)
        path = tmp_path / "snapshot.json"
        await save_snapshot(guild, clan_members[0], path, TARGET_ROLES)
        guild.chunk.reset_mock()

        roster = await resolve_roster(guild, clan_members[0], TARGET_ROLES, path)

        assert len(roster) == 3
        guild.chunk.assert_not_awaited()

    async def test_failed_fetch_writes_nothing(self, tmp_path) -> None:
        guild = make_guild()
        guild.chunk = AsyncMock(side_effect=_http_error(discord.Forbidden, 403))
        path = tmp_path / "snapshot.json"

        assert not await save_snapshot(guild, make_member(1, "Alpha", [100]), path, TARGET_ROLES)
        assert not path.exists()

    def test_missing_and_corrupt_files(self, tmp_path) -> None:
        corrupt = tmp_path / "corrupt.json"
        corrupt.write_text("{not json", encoding="utf-8")

        assert load_snapshot(tmp_path / "missing.json") is None
        assert load_snapshot(corrupt) is None
        assert load_snapshot(None) is None

    def test_delete(self, tmp_path) -> None:
        path = tmp_path / "snapshot.json"
        path.write_text("{}", encoding="utf-8")

        assert delete_snapshot(path) is True
        assert delete_snapshot(path) is False
