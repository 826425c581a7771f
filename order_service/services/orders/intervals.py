"""Value comparison and rendering of delivery / pickup window lists.

Windows are compared instant by instant, never through their serialized
text: two lists built through different paths (parsed from JSON, loaded from
the database, constructed in code) compare equal when they describe the same
instants in the same order.
"""

from datetime import date, datetime, time, timezone
from typing import Iterable, Sequence, Tuple, Union

from order_service.schemas.orders import Interval

IntervalLike = Union[Interval, Tuple[datetime, datetime]]

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
INTERVAL_SEPARATOR = "; "


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: Union[date, datetime]) -> datetime:
    """Midnight UTC of a calendar day; datetimes are returned as UTC instants."""
    if isinstance(value, datetime):
        return to_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def utc_day(value: Union[date, datetime]) -> date:
    """Calendar day of ``value`` in UTC; plain dates are returned unchanged."""
    if isinstance(value, datetime):
        return to_utc(value).date()
    return value


def format_instant(value: datetime) -> str:
    """Render an instant in the fixed UTC format used by audit records."""
    return to_utc(value).strftime(TIMESTAMP_FORMAT)


def _bounds(interval: IntervalLike) -> Tuple[datetime, datetime]:
    if isinstance(interval, Interval):
        return interval.start, interval.end
    start, end = interval
    return start, end


def intervals_equal(
    a: Sequence[IntervalLike],
    b: Sequence[IntervalLike],
) -> bool:
    """
    Compare two interval lists by value.

    Args:
        a: First list of intervals
        b: Second list of intervals

    Returns:
        True when both lists have the same length and every position holds
        the same start and end instants
    """
    if len(a) != len(b):
        return False

    for left, right in zip(a, b):
        left_start, left_end = _bounds(left)
        right_start, right_end = _bounds(right)
        if to_utc(left_start) != to_utc(right_start):
            return False
        if to_utc(left_end) != to_utc(right_end):
            return False

    return True


def render_intervals(intervals: Iterable[IntervalLike]) -> str:
    """
    Render an interval list deterministically.

    Each interval renders as ``<start>/<end>``; intervals are joined by
    ``"; "``. An empty list renders as the empty string.

    Example:
        >>> render_intervals([(datetime(2024, 6, 1, 9), datetime(2024, 6, 1, 11))])
        '2024-06-01T09:00:00.000000Z/2024-06-01T11:00:00.000000Z'
    """
    rendered = []
    for interval in intervals:
        start, end = _bounds(interval)
        rendered.append(f"{format_instant(start)}/{format_instant(end)}")
    return INTERVAL_SEPARATOR.join(rendered)
