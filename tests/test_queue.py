"""Tests for stalker/queue.py — one active user per guild plus a waiting queue."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from stalker.queue import QueueCoordinator


GUILD = "1"


@pytest.fixture
def notifier() -> MagicMock:
    notifier = MagicMock()
    notifier.notify_turn = AsyncMock()
    notifier.notify_position = AsyncMock()
    notifier.notify_turn_lost = AsyncMock()
    return notifier


@pytest.fixture
def clock() -> MagicMock:
    return MagicMock(return_value=1000.0)


@pytest.fixture
def queue(notifier, clock) -> QueueCoordinator:
    return QueueCoordinator(notifier, clock=clock, reservation_seconds=300)


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------

class TestAdmission:
    """Tests for try_admit() and positions."""

    async def test_first_user_gets_the_slot(self, queue) -> None:
        admission = await queue.try_admit(GUILD, "A")

        assert admission.admitted
        assert queue.is_active(GUILD)
        assert queue.active_processor(GUILD) == "A"

    async def test_active_user_is_readmitted(self, queue) -> None:
        await queue.try_admit(GUILD, "A")
        assert (await queue.try_admit(GUILD, "A")).admitted
        assert queue.queue_length(GUILD) == 0

    async def test_waiters_count_from_one(self, queue, notifier) -> None:
        await queue.try_admit(GUILD, "A")
        b = await queue.try_admit(GUILD, "B")
        c = await queue.try_admit(GUILD, "C")

        assert not b.admitted and b.position == 1
        assert not c.admitted and c.position == 2
        assert notifier.notify_position.await_count == 2

        info = queue.queue_info(GUILD, "C")
        assert (info.position, info.queue_length, info.active_user_id) == (2, 2, "A")
        assert info.ahead == ["B"]

    async def test_joining_twice_keeps_one_entry(self, queue) -> None:
        await queue.try_admit(GUILD, "A")
        await queue.try_admit(GUILD, "B")
        again = await queue.try_admit(GUILD, "B")

        assert again.position == 1
        assert queue.queue_length(GUILD) == 1

    async def test_guilds_are_independent(self, queue) -> None:
        await queue.try_admit("1", "A")
        assert (await queue.try_admit("2", "B")).admitted


# ---------------------------------------------------------------------------
# Release and reservations
# ---------------------------------------------------------------------------

class TestReservations:
    """Tests for release(), reservations and their expiry."""

    async def test_release_without_waiters_forgets_guild(self, queue) -> None:
        await queue.try_admit(GUILD, "A")
        await queue.release(GUILD, "A")

        assert not queue.is_active(GUILD)
        assert GUILD not in queue.guilds

    async def test_unclaimed_turn_passes_to_next(self, queue, notifier) -> None:
        """A releases, B never claims, C gets the slot."""
        for user in ("A", "B", "C"):
            await queue.try_admit(GUILD, user)

        await queue.release(GUILD, "A")

        notifier.notify_turn.assert_awaited_once_with(GUILD, "B", 1300.0)
        assert queue.has_reservation(GUILD, "B")
        assert queue.position(GUILD, "B") == 0
        assert queue.position(GUILD, "C") == 1
        assert queue.queue_info(GUILD, "C").ahead == []

        await queue.expire_reservation(GUILD, "B")

        notifier.notify_turn_lost.assert_awaited_once_with(GUILD, "B")
        assert notifier.notify_turn.await_args.args == (GUILD, "C", 1300.0)
        assert queue.position(GUILD, "B") is None

        admission = await queue.try_admit(GUILD, "C")
        assert admission.admitted
        assert queue.active_processor(GUILD) == "C"
        assert queue.queue_length(GUILD) == 0
        assert queue.reservation(GUILD) is None

    async def test_only_the_holder_can_claim(self, queue) -> None:
        for user in ("A", "B", "C"):
            await queue.try_admit(GUILD, user)
        await queue.release(GUILD, "A")

        c = await queue.try_admit(GUILD, "C")
        d = await queue.try_admit(GUILD, "D")

        assert not c.admitted and c.position == 1
        assert not d.admitted and d.position == 2
        assert queue.active_processor(GUILD) is None

        assert (await queue.try_admit(GUILD, "B")).admitted
        assert queue.position(GUILD, "C") == 1

    async def test_stale_reservation_does_not_block(self, queue, clock) -> None:
        await queue.try_admit(GUILD, "A")
        await queue.try_admit(GUILD, "B")
        await queue.release(GUILD, "A")

        clock.return_value = 1301.0

        assert not queue.has_reservation(GUILD, "B")
        assert (await queue.try_admit(GUILD, "C")).admitted

    async def test_expiry_for_someone_else_is_ignored(self, queue, notifier) -> None:
        await queue.try_admit(GUILD, "A")
        await queue.try_admit(GUILD, "B")
        await queue.release(GUILD, "A")

        await queue.expire_reservation(GUILD, "X")

        assert queue.has_reservation(GUILD, "B")
        notifier.notify_turn_lost.assert_not_awaited()

    async def test_remove_from_queue(self, queue) -> None:
        for user in ("A", "B", "C"):
            await queue.try_admit(GUILD, user)

        queue.remove_from_queue(GUILD, "B")

        assert queue.position(GUILD, "B") is None
        assert queue.position(GUILD, "C") == 1

    async def test_release_by_someone_else_is_ignored(self, queue, notifier) -> None:
        await queue.try_admit(GUILD, "A")
        await queue.try_admit(GUILD, "B")

        await queue.release(GUILD, "B")

        assert queue.active_processor(GUILD) == "A"
        assert queue.position(GUILD, "B") == 1
        notifier.notify_turn.assert_not_awaited()

    async def test_second_release_keeps_next_user_active(self, queue) -> None:
        await queue.try_admit(GUILD, "A")
        await queue.try_admit(GUILD, "B")
        await queue.release(GUILD, "A")
        assert (await queue.try_admit(GUILD, "B")).admitted

        await queue.release(GUILD, "A")

        assert queue.active_processor(GUILD) == "B"
        assert not (await queue.try_admit(GUILD, "C")).admitted
