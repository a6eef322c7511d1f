from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
import pandas as pd

from clinic_insights.analytics.crosstab import percentage
from clinic_insights.analytics.windows import PREVIOUS_PERIOD_TEXT, TimeWindow
from clinic_insights.preprocess.time import DAY_NAMES, day_name_of

EARTH_RADIUS_KM = 6371.0
HALF_HOUR_SLOTS = 48
DISTANCE_BANDS = ("<1km", "1-2km", "2-5km", ">5km")
UNKNOWN_DISTANCE = "unknown"


def round_half_up(value: float) -> int:
    """Nearest integer with halves rounded towards +inf (12.5 -> 13, -12.5 -> -12)."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class PeriodComparison:
    percentage: int
    increased: bool

    def describe(self, token: str) -> str:
        direction = "up" if self.increased else "down"
        period = PREVIOUS_PERIOD_TEXT.get(token, "previous period")
        return f"{self.percentage}% {direction} from {period}"


def compare_periods(current_count: int, previous_count: int) -> PeriodComparison | None:
    """Change against the previous window; None when there is nothing to compare to."""
    if previous_count <= 0:
        return None
    change = ((current_count - previous_count) / previous_count) * 100.0
    return PeriodComparison(percentage=abs(round_half_up(change)), increased=change > 0)


def day_of_week_distribution(
    df: pd.DataFrame,
    window: TimeWindow,
    decimals: int = 1,
) -> pd.DataFrame:
    """Visits per weekday with the average per occurrence of that weekday in the window."""
    if df.empty:
        day_counts = pd.Series(0, index=DAY_NAMES, dtype="int64")
    else:
        day_counts = (
            day_name_of(pd.to_datetime(df["occurred_at"]))
            .value_counts()
            .reindex(DAY_NAMES, fill_value=0)
            .astype("int64")
        )

    occurrences = pd.Series(0, index=DAY_NAMES, dtype="int64")
    if window.end >= window.start:
        calendar = pd.date_range(start=window.start, end=window.end, freq="D")
        if len(calendar):
            occurrences = (
                day_name_of(pd.Series(calendar))
                .value_counts()
                .reindex(DAY_NAMES, fill_value=0)
                .astype("int64")
            )

    total = int(day_counts.sum())
    rows = []
    for day in DAY_NAMES:
        count = int(day_counts[day])
        seen = int(occurrences[day])
        rows.append(
            {
                "day": day,
                "count": count,
                "percentage": percentage(count, total, decimals),
                "average": round_half_up(count / seen) if seen > 0 else 0,
            }
        )
    return pd.DataFrame(rows, columns=["day", "count", "percentage", "average"])


def _format_clock(hour: int, minutes: int) -> str:
    suffix = "AM" if hour % 24 < 12 else "PM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minutes:02d} {suffix}"


def half_hour_label(slot: int) -> str:
    start_hour, start_minutes = divmod(slot * 30, 60)
    end_hour, end_minutes = divmod((slot + 1) * 30, 60)
    return f"{_format_clock(start_hour, start_minutes)} - {_format_clock(end_hour, end_minutes)}"


def half_hour_distribution(df: pd.DataFrame, decimals: int = 1) -> pd.DataFrame:
    """Visits per half-hour of the day, trimmed to the first and last busy slot."""
    columns = ["slot", "label", "count", "percentage"]
    if df.empty:
        return pd.DataFrame(columns=columns)

    occurred = pd.to_datetime(df["occurred_at"]).dropna()
    slots = (occurred.dt.hour * 2 + (occurred.dt.minute >= 30)).astype(int)
    counts = slots.value_counts().reindex(range(HALF_HOUR_SLOTS), fill_value=0)
    busy = np.flatnonzero(counts.to_numpy() > 0)
    if busy.size == 0:
        return pd.DataFrame(columns=columns)

    total = int(counts.sum())
    rows = [
        {
            "slot": slot,
            "label": half_hour_label(slot),
            "count": int(counts[slot]),
            "percentage": percentage(int(counts[slot]), total, decimals),
        }
        for slot in range(int(busy[0]), int(busy[-1]) + 1)
    ]
    return pd.DataFrame(rows, columns=columns)


@dataclass(frozen=True)
class PatientStatusCounts:
    new: int
    old_follow_up: int
    old_fresh: int

    @property
    def total(self) -> int:
        return self.new + self.old_follow_up + self.old_fresh


def patient_status_counts(
    current: pd.DataFrame,
    prior_patient_ids: set[str] | frozenset[str],
) -> PatientStatusCounts:
    """Split window visits into new patients and returning ones (follow-up or fresh).

    A patient with any visit before the window is returning. A patient first
    seen inside the window counts as new once; their later visits in the
    window count as returning.
    """
    known = {str(patient_id) for patient_id in prior_patient_ids}
    new = old_follow_up = old_fresh = 0
    ordered = current.sort_values("occurred_at", kind="mergesort")
    for patient_id, is_follow_up in zip(ordered["patient_id"], ordered["is_follow_up"]):
        patient_key = str(patient_id)
        if patient_key in known:
            if bool(is_follow_up):
                old_follow_up += 1
            else:
                old_fresh += 1
        else:
            new += 1
            known.add(patient_key)
    return PatientStatusCounts(new=new, old_follow_up=old_follow_up, old_fresh=old_fresh)


@dataclass(frozen=True)
class ConsultationTimes:
    avg_wait_minutes: int
    avg_consult_minutes: int
    valid_records: int


def consultation_times(
    df: pd.DataFrame,
    max_consult_minutes: float = 120.0,
) -> ConsultationTimes:
    """Average wait (appointment to consultation start) and consultation length.

    Wait only counts when the consultation starts on the appointment's day.
    Records with a negative wait or a consultation outside
    ``[0, max_consult_minutes]`` are ignored.
    """
    if df.empty:
        return ConsultationTimes(avg_wait_minutes=0, avg_consult_minutes=0, valid_records=0)

    working = df.dropna(subset=["consultation_start", "consultation_end"])
    appointment = pd.to_datetime(working["occurred_at"])
    start = pd.to_datetime(working["consultation_start"])
    end = pd.to_datetime(working["consultation_end"])

    consult = (end - start).dt.total_seconds() / 60.0
    same_day = appointment.dt.date == start.dt.date
    wait = ((start - appointment).dt.total_seconds() / 60.0).where(same_day, 0.0)

    valid = (wait >= 0) & (consult >= 0) & (consult <= max_consult_minutes)
    n_valid = int(valid.sum())
    if n_valid == 0:
        return ConsultationTimes(avg_wait_minutes=0, avg_consult_minutes=0, valid_records=0)
    return ConsultationTimes(
        avg_wait_minutes=round_half_up(float(wait[valid].mean())),
        avg_consult_minutes=round_half_up(float(consult[valid].mean())),
        valid_records=n_valid,
    )


def format_duration(minutes: float) -> str:
    if minutes < 1:
        return "Less than a minute"
    if minutes < 60:
        return f"{round_half_up(minutes)} min"
    hours = math.floor(minutes / 60)
    return f"{hours}h {round_half_up(minutes % 60)}min"


def haversine_km(
    lat1: float | np.ndarray,
    lon1: float | np.ndarray,
    lat2: float | np.ndarray,
    lon2: float | np.ndarray,
) -> np.ndarray:
    lat1, lon1, lat2, lon2 = (np.radians(np.asarray(v, dtype=float)) for v in (lat1, lon1, lat2, lon2))
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    a = np.sin(d_lat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(d_lon / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))


def add_distance_km(df: pd.DataFrame, latitude: float, longitude: float) -> pd.DataFrame:
    working = df.copy()
    lat = pd.to_numeric(working["latitude"], errors="coerce").to_numpy(dtype=float)
    lon = pd.to_numeric(working["longitude"], errors="coerce").to_numpy(dtype=float)
    working["distance_km"] = haversine_km(latitude, longitude, lat, lon)
    return working


def distance_band(distance_km: float) -> str:
    if distance_km is None or not np.isfinite(distance_km):
        return UNKNOWN_DISTANCE
    if distance_km < 1:
        return "<1km"
    if distance_km < 2:
        return "1-2km"
    if distance_km < 5:
        return "2-5km"
    return ">5km"


def distance_band_counts(df: pd.DataFrame) -> pd.DataFrame:
    """Patients per distance band; each patient counted once."""
    columns = ["band", "count"]
    bands = [*DISTANCE_BANDS, UNKNOWN_DISTANCE]
    if df.empty or "distance_km" not in df.columns:
        return pd.DataFrame({"band": bands, "count": [0] * len(bands)}, columns=columns)
    patients = df.drop_duplicates(subset=["patient_id"], keep="first")
    labels = pd.to_numeric(patients["distance_km"], errors="coerce").map(distance_band)
    counts = labels.value_counts().reindex(bands, fill_value=0)
    return pd.DataFrame({"band": bands, "count": counts.astype(int).tolist()}, columns=columns)
