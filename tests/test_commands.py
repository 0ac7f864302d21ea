"""Tests for the helper functions of stalker/commands.py."""

from types import SimpleNamespace

import pytest

from stalker.commands import has_permission, parse_resolve_id, parse_week, resolve_clan
from stalker.config import ServerConfig

from conftest import make_member


@pytest.fixture
def config() -> ServerConfig:
    return ServerConfig(
        guild_id="1",
        target_roles={"main": "100", "academy": "200"},
        allowed_punish_roles=["500"],
    )


def _member(role_ids, administrator: bool = False):
    member = make_member(1, "Mod", role_ids)
    member.guild_permissions = SimpleNamespace(administrator=administrator)
    return member


class TestParseResolveId:
    """Tests for parse_resolve_id()."""

    def test_plain_nick(self) -> None:
        assert parse_resolve_id("resolve_Alpha_120") == ("Alpha", 120)

    def test_nick_with_underscores(self) -> None:
        assert parse_resolve_id("resolve_big_boss_7") == ("big_boss", 7)

    @pytest.mark.parametrize("action", ["resolve_Alpha", "confirm_save", "resolve_Alpha_x"])
    def test_invalid(self, action) -> None:
        assert parse_resolve_id(action) is None


class TestParseWeek:
    """Tests for parse_week()."""

    @pytest.mark.parametrize("text, expected", [
        ("41-2025", (41, 2025)),
        ("1/2026", (1, 2026)),
        (" 53-2020 ", (53, 2020)),
    ])
    def test_valid(self, text, expected) -> None:
        assert parse_week(text) == expected

    @pytest.mark.parametrize("text", ["0-2025", "54-2025", "41-25", "week 41", ""])
    def test_invalid(self, text) -> None:
        assert parse_week(text) is None


class TestAccess:
    """Tests for has_permission() and resolve_clan()."""

    def test_administrator(self, config) -> None:
        assert has_permission(_member([], administrator=True), config)

    def test_moderator_role(self, config) -> None:
        assert has_permission(_member([500]), config)
        assert not has_permission(_member([100]), config)

    def test_explicit_clan(self, config) -> None:
        member = _member([100])
        assert resolve_clan(member, config, "academy") == "academy"
        assert resolve_clan(member, config, "unknown") is None

    def test_own_clan(self, config) -> None:
        assert resolve_clan(_member([200]), config, None) == "academy"
        assert resolve_clan(_member([999]), config, None) is None
