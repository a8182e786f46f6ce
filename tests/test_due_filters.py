"""Tests for calendar-day due date filtering."""

from datetime import UTC, date, datetime

import pytest

from ticktick_mcp.ticktick.due_filters import due_calendar_date, matches_due_filter, resolve_zone

# Wednesday
NOW = datetime(2025, 3, 12, 9, 0, tzinfo=UTC)


def task(due: str | None, zone: str | None = None) -> dict:
    return {"id": "t", "dueDate": due, "timeZone": zone}


class TestResolveZone:
    def test_known_zone(self):
        assert str(resolve_zone("Asia/Tokyo")) == "Asia/Tokyo"

    @pytest.mark.parametrize("name", [None, "", "Mars/Olympus_Mons"])
    def test_missing_or_unknown_zone_is_utc(self, name):
        assert resolve_zone(name) is UTC


class TestDueCalendarDate:
    def test_ticktick_format(self):
        assert due_calendar_date("2025-03-12T15:00:00.000+0000", UTC) == date(2025, 3, 12)

    def test_shifted_into_zone(self):
        # 15:00 UTC is already the next morning in Tokyo
        zone = resolve_zone("Asia/Tokyo")

        assert due_calendar_date("2025-03-12T15:00:00.000+0000", zone) == date(2025, 3, 13)

    def test_iso_with_z(self):
        assert due_calendar_date("2025-03-12T23:30:00Z", UTC) == date(2025, 3, 12)

    def test_date_prefix_fallback(self):
        assert due_calendar_date("2025-03-12 sometime", UTC) == date(2025, 3, 12)

    def test_garbage(self):
        assert due_calendar_date("whenever", UTC) is None


class TestMatchesDueFilter:
    @pytest.mark.parametrize(
        ("due", "due_filter", "expected"),
        [
            ("2025-03-12T20:00:00.000+0000", "today", True),
            ("2025-03-13T08:00:00.000+0000", "today", False),
            ("2025-03-13T08:00:00.000+0000", "tomorrow", True),
            ("2025-03-11T23:59:00.000+0000", "overdue", True),
            ("2025-03-12T00:00:00.000+0000", "overdue", False),
            ("2025-03-12T00:00:00.000+0000", "this_week", True),
            ("2025-03-18T23:00:00.000+0000", "this_week", True),
            ("2025-03-19T00:00:00.000+0000", "this_week", False),
            ("2025-03-10T00:00:00.000+0000", "this_week", False),
        ],
    )
    def test_utc_calendar_days(self, due, due_filter, expected):
        assert matches_due_filter(task(due), due_filter, NOW) is expected

    def test_late_evening_in_users_zone_is_still_today(self):
        # 23:00 on the 12th in Los Angeles is 06:00 UTC on the 13th; "now" there is 01:00 on the 12th
        now = datetime(2025, 3, 12, 8, 0, tzinfo=UTC)
        item = task("2025-03-13T06:00:00.000+0000", "America/Los_Angeles")

        assert matches_due_filter(item, "today", now)
        assert not matches_due_filter(item, "overdue", now)

    def test_tokyo_rolls_over_before_utc(self):
        item = task("2025-03-12T16:00:00.000+0000", "Asia/Tokyo")

        assert matches_due_filter(item, "tomorrow", NOW)
        assert not matches_due_filter(item, "today", NOW)

    @pytest.mark.parametrize("due", [None, "", "not a date"])
    def test_tasks_without_usable_due_date_never_match(self, due):
        for due_filter in ("today", "tomorrow", "overdue", "this_week"):
            assert not matches_due_filter(task(due), due_filter, NOW)

    def test_unknown_filter(self):
        assert not matches_due_filter(task("2025-03-12T10:00:00.000+0000"), "someday", NOW)
