"""
Time-window helpers shared by the loader and the metrics engine.

All timestamps inside the dashboard are naive pandas Timestamps in the
host's local calendar (or the configured zone). tz-aware input is converted
once, at load time, so window arithmetic never mixes UTC and local time.
"""

from __future__ import annotations

import datetime
import math
from typing import Optional, Union

import numpy as np
import pandas as pd
from dateutil import tz as dateutil_tz

TimestampLike = Union[pd.Timestamp, str, datetime.datetime, datetime.date, np.datetime64]

ONE_DAY = pd.Timedelta(days=1)


def _zone(tz: Optional[str]):
    return tz if tz else dateutil_tz.tzlocal()


def to_local_timestamp(value, tz: Optional[str] = None) -> pd.Timestamp:
    """Parse one value into a naive local Timestamp (NaT when missing or unparseable)."""
    if value is None or isinstance(value, (list, dict)):
        return pd.NaT
    if not isinstance(value, (pd.Timestamp, np.datetime64)) and pd.isna(value):
        return pd.NaT
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError):
        return pd.NaT
    if pd.isna(ts):
        return pd.NaT
    if ts.tzinfo is not None:
        ts = ts.tz_convert(_zone(tz)).tz_localize(None)
    return ts


def resolve_as_of(as_of: Optional[TimestampLike] = None, tz: Optional[str] = None) -> pd.Timestamp:
    """The evaluation instant: `as_of` when given, otherwise now."""
    if as_of is None:
        return pd.Timestamp.now()
    ts = to_local_timestamp(as_of, tz=tz)
    if pd.isna(ts):
        raise ValueError(f"Invalid as-of date: {as_of!r}")
    return ts


# =============================================================================
# CALENDAR BOUNDARIES
# =============================================================================

def month_start(d: TimestampLike) -> pd.Timestamp:
    ts = pd.Timestamp(d)
    return pd.Timestamp(year=ts.year, month=ts.month, day=1)


def month_end(d: TimestampLike) -> pd.Timestamp:
    """Last instant of the calendar month containing `d`."""
    return month_start(d) + pd.offsets.MonthBegin(1) - pd.Timedelta(1, unit="ns")


def year_start(d: TimestampLike) -> pd.Timestamp:
    ts = pd.Timestamp(d)
    return pd.Timestamp(year=ts.year, month=1, day=1)


def add_days(d: TimestampLike, n: int) -> pd.Timestamp:
    """Calendar-day offset; keeps the wall-clock time across DST changes."""
    return pd.Timestamp(d) + pd.DateOffset(days=n)


# =============================================================================
# MEMBERSHIP + DIFFERENCES
# =============================================================================

def is_in_range(timestamp, start: TimestampLike, end: TimestampLike):
    """
    Inclusive `start <= timestamp <= end`.

    Accepts a scalar or a Series; null timestamps are never in range.
    """
    start = pd.Timestamp(start)
    end = pd.Timestamp(end)
    if isinstance(timestamp, pd.Series):
        return timestamp.ge(start) & timestamp.le(end)
    if timestamp is None or pd.isna(timestamp):
        return False
    ts = pd.Timestamp(timestamp)
    return bool(start <= ts <= end)


def days_between(later, earlier):
    """Whole days from `earlier` to `later`, floored. Scalar or vectorised."""
    delta = later - earlier
    if isinstance(delta, pd.Series):
        return np.floor(delta / ONE_DAY)
    if pd.isna(delta):
        return None
    return int(math.floor(delta / ONE_DAY))
