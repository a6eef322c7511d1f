from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Sequence

import pandas as pd

from clinic_insights.analytics.age_bins import DEFAULT_AGE_BINS, ALL_DOCTORS, AgeBin
from clinic_insights.analytics.dimensions import DimensionContext
from clinic_insights.analytics.filters import FilterSpec
from clinic_insights.analytics.windows import TimeWindow, previous, resolve, select_before, select_window
from clinic_insights.config import AppConfig
from clinic_insights.errors import InsightsError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class WidgetParams:
    """Everything a widget's output depends on besides the visits themselves."""

    range_token: str = "1week"
    doctor_id: str | None = None
    custom_start: Any = None
    custom_end: Any = None
    filters: tuple[FilterSpec, ...] = ()
    group_by: str = "location"
    selected_series: str | None = None


@dataclass(frozen=True)
class WidgetContext:
    params: WidgetParams
    window: TimeWindow
    history: pd.DataFrame
    current: pd.DataFrame
    dimensions: DimensionContext
    config: AppConfig

    @property
    def now(self) -> pd.Timestamp:
        return self.dimensions.now

    def previous_window(self) -> TimeWindow:
        return previous(self.window)

    def before_window(self) -> pd.DataFrame:
        return select_before(self.history, self.window.start)


@dataclass(frozen=True)
class WidgetResult:
    widget: str
    summary: dict[str, Any]
    tables: dict[str, pd.DataFrame] = field(default_factory=dict)


@dataclass(frozen=True)
class WidgetState:
    widget: str
    status: Literal["ok", "error"]
    result: WidgetResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class Widget:
    name: str

    def run(self, ctx: WidgetContext) -> WidgetResult:
        raise NotImplementedError


def _doctor_visits(visits: pd.DataFrame, doctor_id: str | None) -> pd.DataFrame:
    if doctor_id is None or doctor_id == ALL_DOCTORS:
        return visits
    return visits.loc[visits["doctor_id"].astype(str) == str(doctor_id)].copy()


def build_context(
    visits: pd.DataFrame,
    params: WidgetParams,
    now: datetime | pd.Timestamp,
    config: AppConfig,
    bins: Sequence[AgeBin] = DEFAULT_AGE_BINS,
) -> WidgetContext:
    window = resolve(
        params.range_token,
        now,
        params.custom_start,
        params.custom_end,
        timezone_name=config.time.timezone,
    )
    history = _doctor_visits(visits, params.doctor_id)
    return WidgetContext(
        params=params,
        window=window,
        history=history,
        current=select_window(history, window),
        dimensions=DimensionContext.build(now=window.end, bins=bins, categories=config.categories),
        config=config,
    )


def run_widget(widget: Widget, ctx: WidgetContext) -> WidgetState:
    """Run one widget, turning failures into a degraded state instead of raising."""
    try:
        result = widget.run(ctx)
    except InsightsError as exc:
        LOGGER.warning("Widget %s degraded: %s", widget.name, exc)
        return WidgetState(widget=widget.name, status="error", error=str(exc))
    except Exception as exc:
        LOGGER.exception("Widget %s failed", widget.name)
        return WidgetState(widget=widget.name, status="error", error=str(exc))
    return WidgetState(widget=widget.name, status="ok", result=result)
