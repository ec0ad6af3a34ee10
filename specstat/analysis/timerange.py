"""Reporting window and option parsing helpers."""

from datetime import datetime, timedelta
from typing import Optional

from specstat.config import DEFAULT_SINCE_HOURS, DEFAULT_UNTIL_HOURS

DATE_FORMATS = ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M")


def default_time_range(
    since_hours: int = DEFAULT_SINCE_HOURS,
    until_hours: int = DEFAULT_UNTIL_HOURS,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Window relative to today's local midnight.

    With the defaults (-30, 20) this is yesterday 18:00 to today 20:00.

    Args:
        since_hours: Offset of the start from midnight, in hours
        until_hours: Offset of the end from midnight, in hours
        now: Reference time (defaults to the current local time)

    Returns:
        (since, until) as timezone-aware local datetimes
    """
    now = (now or datetime.now()).astimezone()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(hours=since_hours), midnight + timedelta(hours=until_hours)


def parse_datetime(value: str) -> datetime:
    """Parse a date or date-time given on the command line as local time.

    Raises:
        ValueError: If no supported format matches
    """
    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).astimezone()
        except ValueError:
            continue

    try:
        # ISO 8601 with an explicit offset
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Invalid date format: {value}. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS.")
    return parsed if parsed.tzinfo else parsed.astimezone()


def parse_branches(value: Optional[str]) -> list[str]:
    """Split a comma-separated branch list."""
    if not value:
        return []
    return [branch.strip() for branch in value.split(",") if branch.strip()]
