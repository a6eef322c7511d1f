from __future__ import annotations

import pandas as pd

from clinic_insights.config import TimeConfig

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
WEEKEND_DAYS = frozenset({"Saturday", "Sunday"})


def to_local_timestamps(values: pd.Series, timezone_name: str) -> pd.Series:
    timestamps = pd.to_datetime(values, errors="coerce")
    if isinstance(timestamps.dtype, pd.DatetimeTZDtype):
        return timestamps.dt.tz_convert(timezone_name)
    if pd.api.types.is_datetime64_dtype(timestamps.dtype):
        return timestamps.dt.tz_localize(
            timezone_name,
            nonexistent="shift_forward",
            ambiguous="NaT",
        )
    # Mixed offsets come back as object dtype; normalize through UTC.
    timestamps = pd.to_datetime(values, errors="coerce", utc=True)
    return timestamps.dt.tz_convert(timezone_name)


def day_name_of(timestamps: pd.Series) -> pd.Series:
    # pandas counts Monday as 0; the dashboard week starts on Sunday.
    sunday_first = (timestamps.dt.dayofweek + 1) % 7
    return sunday_first.map(lambda index: DAY_NAMES[int(index)] if pd.notna(index) else None)


def add_time_features(df: pd.DataFrame, config: TimeConfig) -> pd.DataFrame:
    working = df.copy()
    timezone_name = config.timezone

    timestamps = to_local_timestamps(working["occurred_at"], timezone_name)
    invalid = int(timestamps.isna().sum())
    if len(working) and invalid == len(working):
        raise ValueError("No valid timestamps found in occurred_at column")

    working["occurred_at"] = timestamps
    for column in ("consultation_start", "consultation_end"):
        if column in working.columns:
            working[column] = to_local_timestamps(working[column], timezone_name)

    working["date"] = timestamps.dt.strftime("%Y-%m-%d")
    working["hour"] = timestamps.dt.hour
    working["half_hour_slot"] = (timestamps.dt.hour * 2) + (timestamps.dt.minute >= 30)
    working["day_of_week"] = day_name_of(timestamps)
    working["is_weekend"] = working["day_of_week"].isin(WEEKEND_DAYS)
    working["weekday_weekend"] = working["is_weekend"].map({True: "Weekend", False: "Weekday"})
    working.loc[working["day_of_week"].isna(), "weekday_weekend"] = None
    return working
