"""User-assembled filters compiled into the parameter object of the counting query.

Range fields (``age``, ``distance``) map consistently everywhere:

* ``between`` -> ``min = range_start``, ``max = range_end``
* ``below``   -> ``max = range_end``
* ``above``   -> ``min = range_start``
* ``all``     -> no filter

Every parameter slot is always present in the compiled object; ``None``
means "no filter".
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Literal, Mapping, Sequence

import pandas as pd

from clinic_insights.analytics.age_bins import DEFAULT_AGE_BINS, AgeBin, age_group_labels, ages_of
from clinic_insights.analytics.ranking import RankedCategory, rank
from clinic_insights.errors import InsightsError

LOGGER = logging.getLogger(__name__)

FilterOperator = Literal["equals", "all", "between", "below", "above"]
RANGE_OPERATORS = frozenset({"between", "below", "above"})
RANGE_FIELDS = frozenset({"age", "distance"})

# Dashboard field name -> QueryParams slot for categorical fields.
CATEGORICAL_FIELDS: dict[str, str] = {
    "location": "location",
    "gender": "gender",
    "discoveryChannel": "discovery_channel",
    "day_of_week": "day_of_week",
    "weekdayWeekend": "weekday_weekend",
    "appointment_type": "appointment_type",
}
FILTER_FIELDS: tuple[str, ...] = (*CATEGORICAL_FIELDS.keys(), *sorted(RANGE_FIELDS))

# Comparison field -> visits column it groups by.
GROUP_BY_COLUMNS: dict[str, str] = {
    "location": "area",
    "discoveryChannel": "discovery_channel",
    "weekdayWeekend": "weekday_weekend",
    "day_of_week": "day_of_week",
    "gender": "gender",
    "appointment_type": "appointment_type",
    "age": "age_group",
}


@dataclass(frozen=True)
class FilterSpec:
    field: str
    operator: FilterOperator = "equals"
    value: Any = None
    range_start: Any = None
    range_end: Any = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> FilterSpec:
        """Build from the dashboard's ``{name, value, rangeStart, rangeEnd}`` shape too."""
        field_name = str(payload.get("field") or payload.get("name") or "")
        value = payload.get("value")
        operator = payload.get("operator")
        if operator is None:
            if field_name in RANGE_FIELDS and value in (*RANGE_OPERATORS, "all"):
                operator, value = value, None
            else:
                operator = "equals"
        return cls(
            field=field_name,
            operator=operator,
            value=value,
            range_start=payload.get("range_start", payload.get("rangeStart")),
            range_end=payload.get("range_end", payload.get("rangeEnd")),
        )


@dataclass(frozen=True)
class QueryParams:
    location: str | None = None
    gender: str | None = None
    discovery_channel: str | None = None
    day_of_week: str | None = None
    weekday_weekend: str | None = None
    appointment_type: str | None = None
    age_min: float | None = None
    age_max: float | None = None
    distance_min: float | None = None
    distance_max: float | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_rpc_params(
        self,
        *,
        hospital_id: str | None = None,
        doctor_id: str | None = None,
        start_date: Any = None,
        end_date: Any = None,
        time_range: str | None = None,
    ) -> dict[str, Any]:
        return {
            "p_hospital_id": hospital_id,
            "p_doctor_id": doctor_id,
            "p_start_date": start_date,
            "p_end_date": end_date,
            "p_time_range": time_range,
            "p_location": self.location,
            "p_gender": self.gender,
            "p_discovery_channel": self.discovery_channel,
            "p_day_of_week": self.day_of_week,
            "p_weekday_weekend": self.weekday_weekend,
            "p_type": self.appointment_type,
            "p_age_min": self.age_min,
            "p_age_max": self.age_max,
            "p_distance_min": self.distance_min,
            "p_distance_max": self.distance_max,
        }


@dataclass(frozen=True)
class CompiledFilters:
    params: QueryParams
    warnings: tuple[str, ...] = ()


def _optional_number(raw: Any) -> float | None:
    if raw is None:
        return None
    if isinstance(raw, str) and not raw.strip():
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _categorical_value(raw: Any) -> str | None:
    if raw is None:
        return None
    text = str(raw).strip()
    if not text or text.lower() == "all":
        return None
    return text


def _range_bounds(spec: FilterSpec) -> tuple[float | None, float | None]:
    start = _optional_number(spec.range_start)
    end = _optional_number(spec.range_end)
    if spec.operator == "between":
        return start, end
    if spec.operator == "below":
        return None, end
    if spec.operator == "above":
        return start, None
    return None, None


def compile_filters(specs: Sequence[FilterSpec]) -> CompiledFilters:
    values: dict[str, Any] = {}
    warnings: list[str] = []
    seen: set[str] = set()

    for spec in specs:
        if spec.field not in FILTER_FIELDS:
            warnings.append(f"ignoring unknown filter field: {spec.field!r}")
            continue
        if spec.field in seen:
            warnings.append(f"ignoring duplicate filter field: {spec.field!r}")
            continue
        seen.add(spec.field)

        if spec.field in RANGE_FIELDS:
            if spec.operator not in RANGE_OPERATORS and spec.operator != "all":
                warnings.append(
                    f"ignoring unsupported operator {spec.operator!r} for {spec.field!r}"
                )
                continue
            minimum, maximum = _range_bounds(spec)
            values[f"{spec.field}_min"] = minimum
            values[f"{spec.field}_max"] = maximum
            continue

        values[CATEGORICAL_FIELDS[spec.field]] = _categorical_value(spec.value)

    for message in warnings:
        LOGGER.warning(message)
    return CompiledFilters(params=QueryParams(**values), warnings=tuple(warnings))


def apply_filters(
    df: pd.DataFrame,
    params: QueryParams,
    now: datetime | pd.Timestamp,
) -> pd.DataFrame:
    """Evaluate compiled params against a preprocessed visits frame."""
    mask = pd.Series(True, index=df.index)
    for slot, column in (
        ("location", "area"),
        ("gender", "gender"),
        ("discovery_channel", "discovery_channel"),
        ("day_of_week", "day_of_week"),
        ("weekday_weekend", "weekday_weekend"),
        ("appointment_type", "appointment_type"),
    ):
        expected = getattr(params, slot)
        if expected is None:
            continue
        mask &= df[column].astype(str).str.casefold() == expected.casefold()

    if params.age_min is not None or params.age_max is not None:
        ages = ages_of(df, now)
        if params.age_min is not None:
            mask &= ages >= params.age_min
        if params.age_max is not None:
            mask &= ages <= params.age_max

    if params.distance_min is not None or params.distance_max is not None:
        if "distance_km" not in df.columns:
            raise InsightsError("distance filters need hospital coordinates")
        distance = pd.to_numeric(df["distance_km"], errors="coerce")
        if params.distance_min is not None:
            mask &= distance >= params.distance_min
        if params.distance_max is not None:
            mask &= distance <= params.distance_max

    return df.loc[mask.fillna(False)].copy()


def comparison_group_column(field: str) -> str:
    try:
        return GROUP_BY_COLUMNS[field]
    except KeyError as exc:
        raise InsightsError(f"cannot compare by unknown field: {field!r}") from exc


def count_by(
    df: pd.DataFrame,
    params: QueryParams,
    group_by: str,
    now: datetime | pd.Timestamp,
    bins: Sequence[AgeBin] = DEFAULT_AGE_BINS,
    decimals: int = 2,
) -> list[RankedCategory]:
    """Filtered visit counts grouped by a comparison field."""
    filtered = apply_filters(df, params, now)
    column = comparison_group_column(group_by)
    if column == "age_group":
        return rank(filtered, lambda frame: age_group_labels(frame, bins, now), decimals=decimals)
    return rank(filtered, column, decimals=decimals)
