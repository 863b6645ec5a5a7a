"""
Input validation for reader and trigger parameters.

All validators raise ValidationError on invalid input.
"""

from datetime import date, datetime, timedelta
from typing import Optional, Tuple, Union

from ordersync.exceptions import ValidationError

MAX_RANGE_DAYS = 3660
MAX_CHANNEL_LENGTH = 255
MAX_LIST_PAGE_SIZE = 250

DateLike = Union[date, str]


def validate_date(value: DateLike, field: str = "date", format: str = "%Y-%m-%d") -> date:
    """
    Accept a date or a YYYY-MM-DD string.

    Raises:
        ValidationError: If the value is missing or malformed
    """
    if value is None or value == "":
        raise ValidationError(field, "Date is required", value)

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a date or a string", value)

    try:
        return datetime.strptime(value, format).date()
    except ValueError:
        raise ValidationError(field, f"Invalid date format. Expected {format}", value)


def validate_date_range(
    start_date: DateLike,
    end_date: DateLike,
    max_days: int = MAX_RANGE_DAYS,
) -> Tuple[date, date]:
    """
    Validate an inclusive calendar-day range.

    Returns:
        Tuple of (start_date, end_date) as date objects

    Raises:
        ValidationError: If dates are invalid, reversed or the range is too large
    """
    start = validate_date(start_date, "start_date")
    end = validate_date(end_date, "end_date")

    if start > end:
        raise ValidationError(
            "date_range",
            "Start date must be before or equal to end date",
            f"{start} to {end}"
        )

    if (end - start).days > max_days:
        raise ValidationError(
            "date_range",
            f"Date range cannot exceed {max_days} days",
            f"{(end - start).days} days"
        )

    return start, end


def utc_bounds(start: date, end: date) -> Tuple[str, str]:
    """
    Half-open UTC timestamp bounds covering every day in [start, end].

    Returns:
        ("<start> 00:00:00+00", "<end + 1 day> 00:00:00+00")
    """
    upper = end + timedelta(days=1)
    return f"{start.isoformat()} 00:00:00+00", f"{upper.isoformat()} 00:00:00+00"


def validate_channel(channel: Optional[str]) -> Optional[str]:
    """Strip a channel filter; empty means no filter."""
    if channel is None:
        return None

    if not isinstance(channel, str):
        raise ValidationError("channel", "Must be a string", channel)

    channel = channel.strip()
    if not channel:
        return None

    if len(channel) > MAX_CHANNEL_LENGTH:
        raise ValidationError(
            "channel",
            f"Channel name too long (max {MAX_CHANNEL_LENGTH} characters)",
            f"{len(channel)} characters"
        )

    return channel


def validate_limit(
    value: int,
    field: str = "page_size",
    min_value: int = 1,
    max_value: int = MAX_LIST_PAGE_SIZE
) -> int:
    """
    Validate a page number or page size for the order listing.

    Raises:
        ValidationError: If the value is not an integer or out of range
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "Must be an integer", value)

    if value < min_value:
        raise ValidationError(field, f"Must be at least {min_value}", value)

    if max_value is not None and value > max_value:
        raise ValidationError(field, f"Cannot exceed {max_value}", value)

    return value
