# -*- coding: utf-8 -*-
"""
Temporal utilities for hourly traffic series.

Functions
---------
- build_hourly_timestamp(count_date, hour, hour_convention): Combine a count date
  and an hour-of-day field into an hourly timestamp.
- regularize(series, freq): Collapse duplicate timestamps and reindex onto a
  complete, gap-free range at ``freq``.
- interpolate_time(series): Fill interior gaps by linear interpolation over time
  and trim edges that cannot be interpolated.
"""

from __future__ import annotations

import pandas as pd

HOUR_CONVENTIONS = ("auto", "start", "end")


def _ensure_datetime_index(s: pd.Series) -> pd.Series:
    """
    Ensure a DatetimeIndex for the input series.

    - If PeriodIndex, convert to Timestamp index at period start.
    - Leaves DatetimeIndex unchanged.
    """
    if isinstance(s.index, pd.PeriodIndex):
        s = s.copy()
        s.index = s.index.to_timestamp()
    elif not isinstance(s.index, pd.DatetimeIndex):
        raise TypeError("Expected a Series with DatetimeIndex or PeriodIndex.")
    return s


def build_hourly_timestamp(count_date: pd.Series,
                           hour: pd.Series,
                           hour_convention: str = "auto") -> pd.Series:
    """
    Build hourly bucket timestamps from a date column and an hour-of-day column.

    Parameters
    ----------
    count_date : pd.Series
        Dates (any time-of-day component is discarded).
    hour : pd.Series
        Hour of day, either 0..23 (hour starting) or 1..24 (hour ending).
    hour_convention : {"auto", "start", "end"}
        "start" uses the hour as-is, "end" shifts 1..24 down to 0..23, "auto"
        picks "end" when the data contain 24 and no 0.

    Returns
    -------
    pd.Series
        Timestamps aligned with the inputs.
    """
    if hour_convention not in HOUR_CONVENTIONS:
        raise ValueError(f"hour_convention must be one of {HOUR_CONVENTIONS}, got {hour_convention!r}")

    hours = pd.to_numeric(hour, errors="coerce")
    if hour_convention == "auto":
        hour_convention = "end" if (hours == 24).any() and not (hours == 0).any() else "start"
    if hour_convention == "end":
        hours = hours - 1

    if ((hours < 0) | (hours > 23)).any():
        raise ValueError("Hour values fall outside a single day after applying the hour convention.")

    dates = pd.to_datetime(count_date).dt.normalize()
    return dates + pd.to_timedelta(hours, unit="h")


def regularize(series: pd.Series, freq: str = "h") -> pd.Series:
    """
    Sort, collapse duplicate timestamps by their mean, and reindex onto a full range.

    Missing timestamps appear as NaN in the output; the frequency is set on the index.
    """
    s = _ensure_datetime_index(series).sort_index()
    if s.index.has_duplicates:
        s = s.groupby(level=0).mean()
    if s.empty:
        return s
    full_index = pd.date_range(s.index.min(), s.index.max(), freq=freq)
    out = s.reindex(full_index)
    out.index.name = series.index.name
    return out


def interpolate_time(series: pd.Series) -> pd.Series:
    """
    Fill missing values by linear interpolation over time.

    Only interior gaps are filled. Leading and trailing NaNs have no neighbour on
    one side and are trimmed instead, so the result has no missing values. A
    gap-free input is returned unchanged, which makes the function idempotent.

    Parameters
    ----------
    series : pd.Series
        Series with a DatetimeIndex.

    Returns
    -------
    pd.Series
        Interpolated series spanning first to last valid observation.
    """
    s = _ensure_datetime_index(series)
    if not s.isna().any():
        return s

    first, last = s.first_valid_index(), s.last_valid_index()
    if first is None:
        return s.iloc[0:0]
    s = s.loc[first:last]
    filled = s.interpolate(method="time", limit_area="inside")
    return filled
