"""Calendar-day due date filters.

TickTick stores due dates as instants with an offset plus the IANA zone the
user entered them in. Filters compare calendar days in that zone, so a task
due at 23:00 local time is "today" there even when UTC has rolled over.
"""

from datetime import UTC, date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ticktick_mcp.type_aliases import Task

TICKTICK_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"


def resolve_zone(name: str | None) -> tzinfo:
    """ZoneInfo for ``name``, or UTC when absent or unknown."""
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def due_calendar_date(due_date: str, zone: tzinfo) -> date | None:
    """Calendar day of ``due_date`` as seen in ``zone``."""
    try:
        instant = datetime.strptime(due_date, TICKTICK_DATE_FORMAT)
    except ValueError:
        try:
            instant = datetime.fromisoformat(due_date)
        except ValueError:
            # Unparseable timestamps still usually start with the date
            try:
                return date.fromisoformat(due_date[:10])
            except ValueError:
                return None
    if instant.tzinfo is None:
        return instant.date()
    return instant.astimezone(zone).date()


def matches_due_filter(task: Task, due_filter: str, now: datetime) -> bool:
    """Check whether ``task`` falls in ``due_filter`` relative to ``now``."""
    due_date = task.get("dueDate")
    if not isinstance(due_date, str) or not due_date:
        return False

    zone = resolve_zone(task.get("timeZone"))
    due = due_calendar_date(due_date, zone)
    if due is None:
        return False
    today = now.astimezone(zone).date()

    if due_filter == "today":
        return due == today
    if due_filter == "tomorrow":
        return due == today + timedelta(days=1)
    if due_filter == "overdue":
        return due < today
    if due_filter == "this_week":
        return today <= due < today + timedelta(days=7)
    return False
