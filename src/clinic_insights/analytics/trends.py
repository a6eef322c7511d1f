from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import pandas as pd

from clinic_insights.analytics.crosstab import KeySpec, resolve_labels


@dataclass(frozen=True)
class TrendSeries:
    label: str
    values: tuple[int, ...]

    @property
    def total(self) -> int:
        return sum(self.values)


@dataclass(frozen=True)
class TrendTable:
    dates: tuple[str, ...]
    series: tuple[TrendSeries, ...]

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(s.label for s in self.series)

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({"date": list(self.dates)})
        for s in self.series:
            frame[s.label] = list(s.values)
        return frame


def day_of(df: pd.DataFrame) -> pd.Series:
    """ISO calendar day of each visit in the timestamps' own timezone."""
    occurred = pd.to_datetime(df["occurred_at"], errors="coerce")
    return occurred.dt.strftime("%Y-%m-%d")


def build(
    df: pd.DataFrame,
    series_key: KeySpec,
    date_key: KeySpec | None = None,
    series_domain: Sequence[str] | None = None,
) -> TrendTable:
    """Per-day counts for each series label.

    Only days on which at least one visit occurred are listed; days without
    visits are not back-filled. A day where a series has no visits gets 0.
    """
    if df.empty:
        return TrendTable(
            dates=(),
            series=tuple(TrendSeries(label=str(label), values=()) for label in series_domain or []),
        )

    working = df.reset_index(drop=True)
    days = resolve_labels(working, date_key) if date_key is not None else day_of(working)
    days = days.astype(object).where(days.notna(), None)
    dates = sorted({str(day) for day in days if day is not None and str(day).strip()})

    labels = resolve_labels(working, series_key).astype(object).explode()
    frame = pd.DataFrame({"day": days.reindex(labels.index).to_numpy(), "label": labels.to_numpy()})
    frame = frame.dropna()
    frame["day"] = frame["day"].astype(str)
    frame["label"] = frame["label"].astype(str)
    frame = frame[frame["label"].str.strip() != ""]

    if series_domain is not None:
        series_labels = [str(label) for label in dict.fromkeys(series_domain)]
        frame = frame[frame["label"].isin(series_labels)]
    else:
        series_labels = [str(label) for label in pd.unique(frame["label"])]

    if frame.empty:
        counts = pd.DataFrame(0, index=dates, columns=series_labels, dtype="int64")
    else:
        counts = (
            frame.groupby(["day", "label"], sort=False)
            .size()
            .unstack(fill_value=0)
            .reindex(index=dates, columns=series_labels, fill_value=0)
            .astype("int64")
        )

    series = tuple(
        TrendSeries(label=label, values=tuple(int(value) for value in counts[label].to_numpy()))
        for label in series_labels
    )
    return TrendTable(dates=tuple(dates), series=series)


def select_series(table: TrendTable, label: str) -> TrendTable:
    """Project one series out of an already built table."""
    for s in table.series:
        if s.label == label:
            return TrendTable(dates=table.dates, series=(s,))
    return TrendTable(
        dates=table.dates,
        series=(TrendSeries(label=label, values=tuple(0 for _ in table.dates)),),
    )
