from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Literal

import pandas as pd

from clinic_insights.errors import InvalidWindowError

RangeToken = Literal["1day", "1week", "1month", "3months", "custom"]

RANGE_DAYS: dict[str, int] = {
    "1day": 1,
    "1week": 7,
    "1month": 30,
    "3months": 90,
}
RANGE_TOKENS: tuple[str, ...] = (*RANGE_DAYS.keys(), "custom")

PREVIOUS_PERIOD_TEXT = {
    "1day": "yesterday",
    "1week": "last week",
    "1month": "last month",
    "3months": "last 3 months",
    "custom": "previous period",
}


@dataclass(frozen=True)
class TimeWindow:
    start: pd.Timestamp
    end: pd.Timestamp

    @property
    def duration(self) -> pd.Timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.duration == pd.Timedelta(0)


def _as_timestamp(value: Any, timezone_name: str | None, *, field_name: str) -> pd.Timestamp:
    if isinstance(value, pd.Timestamp):
        parsed = value
    elif isinstance(value, (datetime, date)):
        parsed = pd.Timestamp(value)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = pd.Timestamp(value.strip())
        except ValueError as exc:
            raise InvalidWindowError(f"invalid {field_name} for custom window: {value!r}") from exc
    else:
        raise InvalidWindowError(f"custom window requires {field_name}")

    if pd.isna(parsed):
        raise InvalidWindowError(f"invalid {field_name} for custom window: {value!r}")
    if timezone_name is None:
        return parsed
    if parsed.tzinfo is None:
        return parsed.tz_localize(timezone_name, nonexistent="shift_forward", ambiguous="NaT")
    return parsed.tz_convert(timezone_name)


def resolve(
    token: str,
    now: datetime | pd.Timestamp,
    custom_start: Any = None,
    custom_end: Any = None,
    *,
    timezone_name: str | None = None,
) -> TimeWindow:
    """Turn a range token (or explicit custom bounds) into a concrete window ending at ``now``."""
    if token == "custom":
        if custom_start is None or custom_end is None:
            raise InvalidWindowError("custom window requires both start and end")
        start = _as_timestamp(custom_start, timezone_name, field_name="start")
        end = _as_timestamp(custom_end, timezone_name, field_name="end")
        if end < start:
            raise InvalidWindowError("custom window end precedes start")
        return TimeWindow(start=start, end=end)

    if token not in RANGE_DAYS:
        raise InvalidWindowError(f"unknown range token: {token!r}")

    end = pd.Timestamp(now)
    if timezone_name is not None:
        end = (
            end.tz_localize(timezone_name)
            if end.tzinfo is None
            else end.tz_convert(timezone_name)
        )
    return TimeWindow(start=end - pd.Timedelta(days=RANGE_DAYS[token]), end=end)


def previous(window: TimeWindow) -> TimeWindow:
    return TimeWindow(start=window.start - window.duration, end=window.start)


def select_window(df: pd.DataFrame, window: TimeWindow, column: str = "occurred_at") -> pd.DataFrame:
    """Visits with ``start <= occurred_at <= end``; a zero-length window selects nothing."""
    if df.empty or window.is_empty:
        return df.iloc[0:0].copy()
    occurred = df[column]
    mask = (occurred >= window.start) & (occurred <= window.end)
    return df.loc[mask.fillna(False)].copy()


def select_before(df: pd.DataFrame, instant: pd.Timestamp, column: str = "occurred_at") -> pd.DataFrame:
    occurred = df[column]
    return df.loc[(occurred < instant).fillna(False)].copy()
