from __future__ import annotations

import pandas as pd

from clinic_insights.analytics.distributions import (
    compare_periods,
    consultation_times,
    format_duration,
    patient_status_counts,
)
from clinic_insights.analytics.windows import select_window
from clinic_insights.widgets.base import Widget, WidgetContext, WidgetResult


class VisitsCountWidget(Widget):
    name = "visits"

    def run(self, ctx: WidgetContext) -> WidgetResult:
        current_count = int(len(ctx.current))
        previous_count = int(len(select_window(ctx.history, ctx.previous_window())))
        comparison = compare_periods(current_count, previous_count)
        summary = {
            "count": current_count,
            "previous_count": previous_count,
            "change_percentage": None if comparison is None else comparison.percentage,
            "increased": None if comparison is None else comparison.increased,
            "comparison_text": (
                None if comparison is None else comparison.describe(ctx.params.range_token)
            ),
        }
        return WidgetResult(widget=self.name, summary=summary)


class PatientStatusWidget(Widget):
    name = "patient_status"

    def run(self, ctx: WidgetContext) -> WidgetResult:
        prior_ids = set(ctx.before_window()["patient_id"].dropna().astype(str))
        counts = patient_status_counts(ctx.current, prior_ids)
        table = pd.DataFrame(
            [
                {"status": "new", "count": counts.new},
                {"status": "old_follow_up", "count": counts.old_follow_up},
                {"status": "old_fresh", "count": counts.old_fresh},
            ],
            columns=["status", "count"],
        )
        summary = {
            "new": counts.new,
            "old": counts.old_follow_up + counts.old_fresh,
            "old_follow_up": counts.old_follow_up,
            "old_fresh": counts.old_fresh,
            "total": counts.total,
        }
        return WidgetResult(widget=self.name, summary=summary, tables={"patient_status": table})


class ConsultationTimeWidget(Widget):
    name = "consultation_time"

    def __init__(self, max_consult_minutes: float = 120.0) -> None:
        self.max_consult_minutes = max_consult_minutes

    def run(self, ctx: WidgetContext) -> WidgetResult:
        times = consultation_times(ctx.current, max_consult_minutes=self.max_consult_minutes)
        summary = {
            "avg_wait_minutes": times.avg_wait_minutes,
            "avg_consult_minutes": times.avg_consult_minutes,
            "avg_wait_text": format_duration(times.avg_wait_minutes),
            "avg_consult_text": format_duration(times.avg_consult_minutes),
            "valid_records": times.valid_records,
        }
        return WidgetResult(widget=self.name, summary=summary)
