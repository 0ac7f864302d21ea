"""Tests for stalker/punishments.py — roles, warnings and rankings."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from stalker.config import ServerConfig, ServerSettings
from stalker.ledger import PunishmentLedger
from stalker.punishments import PunishmentService, user_target_role_id, warning_message

from conftest import make_guild, make_member, make_role


PUNISHMENT_ROLE = 300
LOTTERY_BAN_ROLE = 400


@pytest.fixture
def settings(tmp_path) -> ServerSettings:
    settings = ServerSettings(tmp_path / "servers.json")
    settings.servers = {
        "1": ServerConfig.from_dict("1", {
            "targetRoles": {"main": "100", "academy": "200"},
            "warningChannels": {"100": "900"},
            "punishmentRoleId": PUNISHMENT_ROLE,
            "lotteryBanRoleId": LOTTERY_BAN_ROLE,
        })
    }
    return settings


@pytest.fixture
def ledger(tmp_path) -> PunishmentLedger:
    return PunishmentLedger(tmp_path / "punishments.json", tmp_path / "weekly_removal.json")


@pytest.fixture
def service(ledger, settings) -> PunishmentService:
    return PunishmentService(ledger, settings)


def _guild(members, channel=None) -> MagicMock:
    guild = make_guild(1, members)
    roles = {PUNISHMENT_ROLE: make_role(PUNISHMENT_ROLE), LOTTERY_BAN_ROLE: make_role(LOTTERY_BAN_ROLE)}
    guild.get_role = MagicMock(side_effect=lambda role_id: roles.get(role_id))
    guild.get_channel = MagicMock(return_value=channel)
    for member in members:
        member.guild = guild
    return guild


def _role_ids(mock_call) -> set:
    return {role.id for role in mock_call.args}


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    """Tests for warning_message() and user_target_role_id()."""

    @pytest.mark.parametrize("points, marker", [(2, "WARNING"), (3, "LOTTERY BAN"), (5, "CLAN REMOVAL")])
    def test_warning_levels(self, points, marker) -> None:
        message = warning_message(make_member(1, "Alpha"), points)
        assert marker in message
        assert "<@1>" in message

    @pytest.mark.parametrize("points", [1, 4, 6])
    def test_no_warning_between_levels(self, points) -> None:
        assert warning_message(make_member(1, "Alpha"), points) is None

    def test_user_target_role(self, settings) -> None:
        config = settings.get(1)
        assert user_target_role_id(make_member(1, "A", [200]), config) == "200"
        assert user_target_role_id(make_member(1, "A", [999]), config) is None


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

class TestUpdateUserRoles:
    """Tests for PunishmentService.update_user_roles()."""

    async def test_two_points_gives_punishment_role(self, service) -> None:
        member = make_member(1, "Alpha", [100])
        _guild([member])

        await service.update_user_roles(member, 2)

        assert _role_ids(member.add_roles.await_args) == {PUNISHMENT_ROLE}
        member.remove_roles.assert_not_awaited()

    async def test_three_points_swaps_for_lottery_ban(self, service) -> None:
        member = make_member(1, "Alpha", [100, PUNISHMENT_ROLE])
        _guild([member])

        await service.update_user_roles(member, 3)

        assert _role_ids(member.remove_roles.await_args) == {PUNISHMENT_ROLE}
        assert _role_ids(member.add_roles.await_args) == {LOTTERY_BAN_ROLE}

    async def test_low_points_strip_roles(self, service) -> None:
        member = make_member(1, "Alpha", [100, PUNISHMENT_ROLE, LOTTERY_BAN_ROLE])
        _guild([member])

        await service.update_user_roles(member, 1)

        assert member.remove_roles.await_count == 2
        member.add_roles.assert_not_awaited()

    async def test_already_correct_roles(self, service) -> None:
        member = make_member(1, "Alpha", [100, LOTTERY_BAN_ROLE])
        _guild([member])

        result = await service.update_user_roles(member, 4)

        assert result == "Alpha: No role changes"

    async def test_missing_role_is_reported(self, service) -> None:
        member = make_member(1, "Alpha", [100])
        guild = _guild([member])
        guild.get_role = MagicMock(return_value=None)

        assert await service.update_user_roles(member, 2) == "❌ Punishment role not found"


# ---------------------------------------------------------------------------
# Manual points, warnings and ranking
# ---------------------------------------------------------------------------

class TestManualPoints:
    """Tests for the manual point commands' service layer."""

    async def test_add_sends_warning_to_clan_channel(self, service, ledger) -> None:
        channel = MagicMock()
        channel.name = "warnings"
        channel.send = AsyncMock()
        member = make_member(1, "Alpha", [100])
        guild = _guild([member], channel)

        user = await service.add_points_manually(guild, "1", 2)

        assert user.points == 2
        assert user.history[0].reason == "Manual point addition"
        guild.get_channel.assert_called_with(900)
        assert "WARNING" in channel.send.await_args.args[0]

    async def test_no_warning_at_one_point(self, service) -> None:
        channel = MagicMock()
        channel.send = AsyncMock()
        member = make_member(1, "Alpha", [100])
        guild = _guild([member], channel)

        await service.add_points_manually(guild, "1", 1)

        channel.send.assert_not_awaited()

    async def test_remove_updates_roles(self, service, ledger) -> None:
        member = make_member(1, "Alpha", [100, LOTTERY_BAN_ROLE])
        guild = _guild([member])
        await ledger.add_points("1", "1", 3)

        user = await service.remove_points_manually(guild, "1", 1)

        assert user.points == 2
        assert _role_ids(member.add_roles.await_args) == {PUNISHMENT_ROLE}

    async def test_delete_user_strips_roles(self, service, ledger) -> None:
        member = make_member(1, "Alpha", [100, PUNISHMENT_ROLE])
        guild = _guild([member])
        await ledger.add_points("1", "1", 2)

        assert await service.delete_user(guild, "1")
        assert _role_ids(member.remove_roles.await_args) == {PUNISHMENT_ROLE}

    async def test_ranking_for_role(self, service, ledger) -> None:
        members = [make_member(1, "Alpha", [100]), make_member(2, "Bravo", [100]), make_member(3, "Charlie", [200])]
        guild = _guild(members)
        await ledger.add_points("1", "1", 1)
        await ledger.add_points("1", "2", 4)
        await ledger.add_points("1", "3", 5)

        ranking = await service.get_ranking_for_role(guild, "100")

        assert [(r.display_name, r.points) for r in ranking] == [("Bravo", 4), ("Alpha", 1)]

    async def test_ranking_skips_users_who_left(self, service, ledger) -> None:
        guild = _guild([])
        guild.fetch_member = AsyncMock(side_effect=discord.NotFound(MagicMock(status=404, reason="x"), "gone"))
        await ledger.add_points("1", "7", 2)

        assert await service.get_ranking_for_role(guild, "100") == []


class TestRunWeeklyDecay:
    """Tests for PunishmentService.run_weekly_decay()."""

    async def test_reapplies_roles_after_decay(self, service, ledger) -> None:
        member = make_member(1, "Alpha", [100, LOTTERY_BAN_ROLE])
        guild = _guild([member])
        await ledger.add_points("1", "1", 3)

        result = await service.run_weekly_decay([guild])

        assert result.applied
        assert result.changed == {"1": {"1": 2}}
        assert _role_ids(member.add_roles.await_args) == {PUNISHMENT_ROLE}

        member.add_roles.reset_mock()
        again = await service.run_weekly_decay([guild])

        assert not again.applied
        member.add_roles.assert_not_awaited()
