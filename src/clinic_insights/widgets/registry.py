from __future__ import annotations

from clinic_insights.config import AppConfig
from clinic_insights.widgets.base import Widget
from clinic_insights.widgets.comparison import ComparisonWidget
from clinic_insights.widgets.counts import (
    ConsultationTimeWidget,
    PatientStatusWidget,
    VisitsCountWidget,
)
from clinic_insights.widgets.crosstabs import CrossTabWidget
from clinic_insights.widgets.distributions import DayOfWeekWidget, DistanceWidget, TimeOfDayWidget
from clinic_insights.widgets.rankings import RankWidget
from clinic_insights.widgets.trends import TrendWidget


def default_widgets(config: AppConfig) -> list[Widget]:
    top = config.analytics.top_k
    widgets: list[Widget] = [
        VisitsCountWidget(),
        PatientStatusWidget(),
        ConsultationTimeWidget(max_consult_minutes=config.analytics.max_consultation_minutes),
        RankWidget("gender", "gender", k=top),
        RankWidget("age", "age_group", k=top),
        RankWidget("locations", "area", k=top, seed_domain=False),
        RankWidget("discovery", "discovery_channel", k=top),
        RankWidget("booking_type", "appointment_type", k=top),
        CrossTabWidget("gender_vs_age", "gender", "age_group"),
        CrossTabWidget("age_vs_discovery", "age_group", "discovery_channel"),
        CrossTabWidget("gender_vs_location", "area", "gender", row_top_k=top),
        CrossTabWidget("gender_vs_day", "gender", "day_of_week"),
        CrossTabWidget("gender_vs_booking", "gender", "appointment_type"),
        CrossTabWidget("location_vs_age", "area", "age_group", row_top_k=top),
        CrossTabWidget("location_vs_discovery", "area", "discovery_channel", row_top_k=top),
        TrendWidget("gender_trends", "gender"),
        TrendWidget("discovery_trends", "discovery_channel"),
        TrendWidget("location_trends", "area", series_top_k=top),
        TrendWidget("booking_trends", "appointment_type"),
        DayOfWeekWidget(),
        TimeOfDayWidget(),
        ComparisonWidget(),
    ]
    if config.hospital.latitude is not None and config.hospital.longitude is not None:
        widgets.insert(3, DistanceWidget())
    return widgets
