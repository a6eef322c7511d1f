from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Sequence

import pandas as pd

from clinic_insights.analytics.age_bins import DEFAULT_AGE_BINS, AgeBin, age_group_labels, sort_bins
from clinic_insights.analytics.crosstab import KeySpec
from clinic_insights.config import CategoriesConfig
from clinic_insights.errors import InsightsError
from clinic_insights.preprocess.time import DAY_NAMES

FOLLOW_UP_LABEL = "Follow-up"
FRESH_VISIT_LABEL = "Fresh visit"


@dataclass(frozen=True)
class DimensionContext:
    now: pd.Timestamp
    bins: tuple[AgeBin, ...] = DEFAULT_AGE_BINS
    categories: CategoriesConfig = field(default_factory=CategoriesConfig)

    @classmethod
    def build(
        cls,
        now: datetime | pd.Timestamp,
        bins: Sequence[AgeBin] = DEFAULT_AGE_BINS,
        categories: CategoriesConfig | None = None,
    ) -> DimensionContext:
        return cls(
            now=pd.Timestamp(now),
            bins=tuple(sort_bins(bins)),
            categories=categories or CategoriesConfig(),
        )


@dataclass(frozen=True)
class Dimension:
    """A named way of labelling visits, plus the labels it is expected to produce."""

    name: str
    title: str
    key: Callable[[DimensionContext], KeySpec]
    domain: Callable[[DimensionContext], Sequence[str] | None] = lambda ctx: None


def _column(name: str) -> Callable[[DimensionContext], KeySpec]:
    return lambda ctx: name


def _age_group_key(ctx: DimensionContext) -> KeySpec:
    return lambda frame: age_group_labels(frame, ctx.bins, ctx.now)


def _visit_kind_key(ctx: DimensionContext) -> KeySpec:
    def _labels(frame: pd.DataFrame) -> pd.Series:
        follow_up = frame["is_follow_up"].fillna(False).astype(bool)
        return follow_up.map({True: FOLLOW_UP_LABEL, False: FRESH_VISIT_LABEL})

    return _labels


DIMENSIONS: dict[str, Dimension] = {
    dimension.name: dimension
    for dimension in (
        Dimension(
            name="gender",
            title="Gender",
            key=_column("gender"),
            domain=lambda ctx: list(ctx.categories.genders),
        ),
        Dimension(name="area", title="Location", key=_column("area")),
        Dimension(
            name="discovery_channel",
            title="Discovery channel",
            key=_column("discovery_channel"),
            domain=lambda ctx: list(ctx.categories.discovery_channels),
        ),
        Dimension(
            name="appointment_type",
            title="Booking type",
            key=_column("appointment_type"),
            domain=lambda ctx: list(ctx.categories.appointment_types),
        ),
        Dimension(
            name="day_of_week",
            title="Day of week",
            key=_column("day_of_week"),
            domain=lambda ctx: list(DAY_NAMES),
        ),
        Dimension(
            name="weekday_weekend",
            title="Weekday / weekend",
            key=_column("weekday_weekend"),
            domain=lambda ctx: ["Weekday", "Weekend"],
        ),
        Dimension(
            name="visit_kind",
            title="Visit kind",
            key=_visit_kind_key,
            domain=lambda ctx: [FOLLOW_UP_LABEL, FRESH_VISIT_LABEL],
        ),
        Dimension(
            name="age_group",
            title="Age group",
            key=_age_group_key,
            domain=lambda ctx: [age_bin.label for age_bin in ctx.bins],
        ),
    )
}


def get_dimension(name: str) -> Dimension:
    try:
        return DIMENSIONS[name]
    except KeyError as exc:
        raise InsightsError(f"unknown dimension: {name!r}") from exc
