"""Month-granularity date helpers shared by the sources and the catalog."""

from datetime import datetime, timezone

EPOCH_START = datetime(1959, 1, 1)


def parse_datetime(value: str) -> datetime:
    """Parse an ISO 8601 date or timestamp into a naive UTC datetime."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_iso_string(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%S")


def floor_month(dt: datetime) -> datetime:
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def add_months(dt: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day to the end of the target month."""
    index = dt.year * 12 + (dt.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(dt.day, _days_in_month(year, month))
    return dt.replace(year=year, month=month, day=day)


def month_of(dt: datetime) -> str:
    """Zero-padded calendar month ("01".."12")."""
    return f"{dt.month:02d}"


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (datetime(year, month + 1, 1) - datetime(year, month, 1)).days
