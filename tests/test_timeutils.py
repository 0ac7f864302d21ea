"""Tests for stalker/timeutils.py — report weeks and decay schedule."""

import datetime
from zoneinfo import ZoneInfo

import pytest

from stalker.timeutils import decay_week_key, iso_week, next_monday_midnight, week_info


TZ = ZoneInfo("Europe/Warsaw")


class TestWeekInfo:
    """Tests for week_info() and its Monday rule."""

    def test_monday_counts_as_previous_week(self) -> None:
        monday = datetime.datetime(2025, 10, 13, 12, 0, tzinfo=TZ)
        info = week_info(monday)
        assert (info.week_number, info.year) == (41, 2025)

    def test_tuesday_starts_new_week(self) -> None:
        tuesday = datetime.datetime(2025, 10, 14, 0, 5, tzinfo=TZ)
        assert week_info(tuesday).week_number == 42

    def test_monday_across_year_boundary(self) -> None:
        """Monday 2024-12-30 is ISO week 1 of 2025; shifted it is week 52 of 2024."""
        info = week_info(datetime.datetime(2024, 12, 30, 9, 0, tzinfo=TZ))
        assert (info.week_number, info.year) == (52, 2024)

    @pytest.mark.parametrize("day", range(1, 29))
    def test_monday_rule_for_every_day(self, day: int) -> None:
        date = datetime.date(2025, 2, day)
        expected_day = date - datetime.timedelta(days=1) if date.weekday() == 0 else date
        assert week_info(date).week_number == iso_week(expected_day)


class TestDecaySchedule:
    """Tests for decay_week_key() and next_monday_midnight()."""

    def test_week_key_uses_plain_iso_week(self) -> None:
        assert decay_week_key(datetime.datetime(2025, 10, 13, 0, 0, tzinfo=TZ)) == "2025-W42"

    def test_next_monday_from_midweek(self) -> None:
        moment = datetime.datetime(2025, 10, 15, 14, 30, tzinfo=TZ)
        assert next_monday_midnight(moment) == datetime.datetime(2025, 10, 20, 0, 0, tzinfo=TZ)

    def test_next_monday_from_monday_is_a_week_later(self) -> None:
        moment = datetime.datetime(2025, 10, 13, 10, 0, tzinfo=TZ)
        assert next_monday_midnight(moment) == datetime.datetime(2025, 10, 20, 0, 0, tzinfo=TZ)
