"""Window-boundary helpers shared by every time-relative criterion.

All windows are closed intervals: both boundaries are inclusive.
"""
from datetime import datetime
from typing import Union
import pandas as pd

TimeLike = Union[datetime, pd.Timestamp, pd.Series]

ONE_MINUTE = pd.Timedelta(minutes=1)


def hours_between(later: TimeLike, earlier: TimeLike):
    """Calculate hours from one timestamp to another.

    Args:
        later: End timestamp
        earlier: Reference timestamp

    Returns:
        Hours between the two (negative when later precedes earlier)
    """
    delta = later - earlier
    if isinstance(delta, pd.Series):
        return delta.dt.total_seconds() / 3600.0
    return delta.total_seconds() / 3600.0


def minutes_between(later: TimeLike, earlier: TimeLike):
    """Whole minutes from earlier to later, truncated toward negative infinity."""
    return (later - earlier) // ONE_MINUTE


def is_within_window(value: TimeLike, start: TimeLike, end: TimeLike):
    """Check value lies in the closed window [start, end].

    Works elementwise when any argument is a Series; missing values
    never satisfy the window.
    """
    return (value >= start) & (value <= end)


def calendar_day_offset(times: pd.Series, anchor: pd.Series) -> pd.Series:
    """Calendar-day difference between two timestamp columns.

    Times on the same calendar date as the anchor are day 0, regardless of
    clock time.
    """
    return (times.dt.normalize() - anchor.dt.normalize()).dt.days
