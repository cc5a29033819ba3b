"""
Fixed-offset wall clock used for every "when" in the journal.

Entries are stamped and bucketed into days at UTC+05:30 regardless of where
the user is. Creation, listing and the dashboard all go through this module so
there is exactly one definition of where a day starts.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional


JOURNAL_OFFSET = timedelta(hours=5, minutes=30)
JOURNAL_TZ = timezone(JOURNAL_OFFSET, "IST")

MAX_DISPLAY_HOURS = 12.0


def now_local() -> datetime:
    return datetime.now(timezone.utc).astimezone(JOURNAL_TZ)


def to_local(moment: datetime) -> datetime:
    # Naive values are already journal wall-clock time.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=JOURNAL_TZ)
    return moment.astimezone(JOURNAL_TZ)


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Serialise for storage, e.g. ``2026-10-19T14:03:12.000000+05:30``."""
    local = to_local(moment) if moment is not None else now_local()
    return local.isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> Optional[datetime]:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_local(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%Y-%m-%d %H:%M:%S").replace(tzinfo=JOURNAL_TZ)
    except ValueError:
        return None


def local_date(value: str) -> Optional[date]:
    moment = parse_timestamp(value)
    return moment.date() if moment else None


def is_today(value: str, now: Optional[datetime] = None) -> bool:
    today = to_local(now).date() if now is not None else now_local().date()
    return local_date(value) == today


def format_display_time(value: str) -> str:
    """``DD/MM/YY, H:MM:SS AM/PM`` in journal time; empty for unparseable input."""
    moment = parse_timestamp(value)
    if moment is None:
        return ""
    hour = moment.hour % 12 or 12
    ampm = "PM" if moment.hour >= 12 else "AM"
    return f"{moment:%d/%m/%y}, {hour}:{moment:%M:%S} {ampm}"


def format_display_date(value: str) -> str:
    moment = parse_timestamp(value)
    return f"{moment:%d/%m/%y}" if moment else ""


def format_hours(minutes: float) -> str:
    """Minutes as hours with one decimal, capped at 12 for display only."""
    hours = min((minutes or 0) / 60, MAX_DISPLAY_HOURS)
    if hours == 1:
        return "1.0 hour"
    return f"{hours:.1f} hours"
