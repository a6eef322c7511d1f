from __future__ import annotations

from clinic_insights.analytics.distributions import (
    day_of_week_distribution,
    distance_band_counts,
    half_hour_distribution,
)
from clinic_insights.errors import InsightsError
from clinic_insights.widgets.base import Widget, WidgetContext, WidgetResult


class DayOfWeekWidget(Widget):
    name = "day_of_week_distribution"

    def run(self, ctx: WidgetContext) -> WidgetResult:
        table = day_of_week_distribution(
            ctx.current,
            ctx.window,
            decimals=ctx.config.analytics.percentage_decimals,
        )
        busiest = table.loc[table["count"].idxmax(), "day"] if table["count"].sum() > 0 else None
        return WidgetResult(
            widget=self.name,
            summary={"total": int(table["count"].sum()), "busiest_day": busiest},
            tables={"distribution": table},
        )


class TimeOfDayWidget(Widget):
    name = "time_of_day_distribution"

    def run(self, ctx: WidgetContext) -> WidgetResult:
        table = half_hour_distribution(
            ctx.current,
            decimals=ctx.config.analytics.percentage_decimals,
        )
        peak = None
        if not table.empty and int(table["count"].max()) > 0:
            peak = str(table.loc[table["count"].astype(int).idxmax(), "label"])
        return WidgetResult(
            widget=self.name,
            summary={"n_slots": int(len(table)), "peak_slot": peak},
            tables={"distribution": table},
        )


class DistanceWidget(Widget):
    name = "patient_distance"

    def run(self, ctx: WidgetContext) -> WidgetResult:
        if "distance_km" not in ctx.current.columns:
            raise InsightsError("patient distances need hospital coordinates in the config")
        table = distance_band_counts(ctx.current)
        return WidgetResult(
            widget=self.name,
            summary={"patients": int(table["count"].sum())},
            tables={"bands": table},
        )
