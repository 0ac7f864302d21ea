"""Shared test fixtures.

Discord objects are replaced by ``MagicMock`` stand-ins carrying only the
attributes the code under test reads (ids, names, roles).
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from stalker.models import RosterEntry


def make_role(role_id) -> SimpleNamespace:
    return SimpleNamespace(id=int(role_id))


def make_member(member_id, display_name: str, role_ids=(), name: str = None) -> MagicMock:
    """A guild member with roles and the async role mutators."""
    member = MagicMock()
    member.id = int(member_id)
    member.display_name = display_name
    member.name = name or display_name.lower()
    member.mention = f"<@{member_id}>"
    member.roles = [make_role(r) for r in role_ids]
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    return member


def make_guild(guild_id=1, members=()) -> MagicMock:
    """A guild whose member cache and fetch calls serve ``members``."""
    guild = MagicMock()
    guild.id = int(guild_id)
    members = list(members)
    by_id = {m.id: m for m in members}
    guild.chunk = AsyncMock(return_value=members)
    guild.get_member = MagicMock(side_effect=lambda user_id: by_id.get(int(user_id)))
    guild.fetch_member = AsyncMock(side_effect=lambda user_id: by_id[int(user_id)])
    return guild


@pytest.fixture
def roster() -> list:
    return [
        RosterEntry(user_id="1", display_name="Alpha"),
        RosterEntry(user_id="2", display_name="Bravo"),
        RosterEntry(user_id="3", display_name="Charlie"),
    ]


@pytest.fixture
def clan_members() -> list:
    """Alpha, Bravo and Charlie in clan role 100, plus an outsider."""
    return [
        make_member(1, "Alpha", [100]),
        make_member(2, "Bravo", [100]),
        make_member(3, "Charlie", [100]),
        make_member(4, "Delta", [200]),
    ]
