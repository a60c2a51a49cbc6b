from datetime import datetime, date, time
import pytz

from venue.config import config


def get_timezone():
    """Get configured timezone."""
    return pytz.timezone(config.timezone)


def now() -> datetime:
    """Get current datetime in configured timezone."""
    return datetime.now(get_timezone())


def local_now() -> datetime:
    """Venue wall-clock time without tzinfo, as stored in the database."""
    return now().replace(tzinfo=None)


def parse_date(value: str | date) -> date:
    """Parse an ISO calendar day (YYYY-MM-DD)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid calendar day: {value!r}")


def parse_time(time_str: str) -> time | None:
    """Parse time string in HH:MM format."""
    try:
        parts = time_str.split(":")
        hour = int(parts[0])
        minute = int(parts[1]) if len(parts) > 1 else 0

        # Handle 24:00 as 00:00
        if hour == 24:
            hour = 0

        return time(hour=hour, minute=minute)
    except (ValueError, IndexError, AttributeError):
        return None


def format_time(t: time) -> str:
    """Format time as HH:MM."""
    return t.strftime("%H:%M")


def format_time_range(time_from: time, time_to: time) -> str:
    """Format time range as HH:MM-HH:MM."""
    return f"{format_time(time_from)}-{format_time(time_to)}"


def to_minutes(t: time, is_end: bool = False) -> int:
    """Minutes since midnight. An end time of 00:00 means midnight (1440)."""
    minutes = t.hour * 60 + t.minute
    if is_end and minutes == 0:
        return 1440
    return minutes


def is_valid_time_range(time_from: time, time_to: time) -> bool:
    """Check if time_to is after time_from (accounting for midnight)."""
    return to_minutes(time_to, is_end=True) > to_minutes(time_from)


def slot_length(time_from: time, time_to: time) -> int:
    """Length of a slot in minutes."""
    return to_minutes(time_to, is_end=True) - to_minutes(time_from)


def slot_contains(time_from: time, time_to: time, moment: time) -> bool:
    """Check whether moment falls inside [time_from, time_to)."""
    minutes = to_minutes(moment)
    return to_minutes(time_from) <= minutes < to_minutes(time_to, is_end=True)


def slot_has_ended(day: date, time_to: time, current: datetime) -> bool:
    """Check whether a slot ending at time_to on day is over at current."""
    if day != current.date():
        return day < current.date()
    return to_minutes(current.time()) >= to_minutes(time_to, is_end=True)


def slot_has_started(day: date, time_from: time, current: datetime) -> bool:
    """Check whether a slot starting at time_from on day has begun at current."""
    if day != current.date():
        return day < current.date()
    return to_minutes(current.time()) >= to_minutes(time_from)
