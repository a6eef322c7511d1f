from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Sequence

import pandas as pd

from clinic_insights.analytics.age_bins import (
    DEFAULT_AGE_BINS,
    AgeBinLoadResult,
    AgeBinScope,
    load_age_bins,
    serialize_bins,
    sort_bins,
)
from clinic_insights.analytics.distributions import add_distance_km
from clinic_insights.analytics.versioning import RequestVersions
from clinic_insights.analytics.windows import TimeWindow
from clinic_insights.config import AppConfig
from clinic_insights.io.age_settings import AgeSettingsStore
from clinic_insights.io.read import load_visits
from clinic_insights.io.write import write_summary, write_table
from clinic_insights.paths import build_output_paths
from clinic_insights.preprocess.demographics import add_demographic_features
from clinic_insights.preprocess.time import add_time_features
from clinic_insights.widgets.base import Widget, WidgetParams, WidgetState, build_context, run_widget
from clinic_insights.widgets.registry import default_widgets

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashboardRun:
    window: TimeWindow
    params: WidgetParams
    age_bins: AgeBinLoadResult
    states: list[WidgetState]
    discarded: list[str] = field(default_factory=list)

    @property
    def failed(self) -> list[WidgetState]:
        return [state for state in self.states if not state.ok]


def preprocess_visits(
    df: pd.DataFrame,
    config: AppConfig,
    now: datetime | pd.Timestamp,
) -> pd.DataFrame:
    working = add_time_features(df=df, config=config.time)
    working = add_demographic_features(df=working, categories=config.categories, now=now)
    hospital = config.hospital
    if hospital.latitude is not None and hospital.longitude is not None:
        working = add_distance_km(working, hospital.latitude, hospital.longitude)
    return working


def prepare_visits(
    csv_path: Path | None,
    config: AppConfig,
    now: datetime | pd.Timestamp,
) -> pd.DataFrame:
    df = load_visits(csv_path=csv_path, config=config)
    LOGGER.info("Loaded %d visit rows", len(df))
    return preprocess_visits(df, config=config, now=now)


def build_dashboard(
    visits: pd.DataFrame,
    params: WidgetParams,
    now: datetime | pd.Timestamp,
    config: AppConfig,
    store: AgeSettingsStore | None = None,
    widgets: Sequence[Widget] | None = None,
    versions: RequestVersions | None = None,
) -> DashboardRun:
    """Run every widget over one parameter set; a failing widget never stops the others.

    With ``versions``, each widget gets a fresh request version before any
    work starts. A widget whose version was superseded by a later build
    while it ran is left out of ``states`` and listed in ``discarded``.
    """
    selected = list(widgets) if widgets is not None else default_widgets(config)
    issued: dict[str, int] = {}
    if versions is not None:
        issued = {widget.name: versions.issue(widget.name) for widget in selected}

    if store is None:
        age_bins = AgeBinLoadResult(bins=sort_bins(DEFAULT_AGE_BINS), source="default")
    else:
        scope = AgeBinScope(hospital_id=config.hospital.hospital_id, doctor_id=params.doctor_id)
        age_bins = load_age_bins(store, scope)

    ctx = build_context(visits, params, now=now, config=config, bins=age_bins.bins)
    LOGGER.info(
        "Building dashboard for %s .. %s (%d visits in window)",
        ctx.window.start,
        ctx.window.end,
        len(ctx.current),
    )
    states: list[WidgetState] = []
    discarded: list[str] = []
    for widget in selected:
        state = run_widget(widget, ctx)
        if versions is not None and not versions.apply(widget.name, issued[widget.name], state):
            discarded.append(widget.name)
            continue
        states.append(state)
    if discarded:
        LOGGER.info("Discarded %d superseded widget result(s)", len(discarded))
    return DashboardRun(
        window=ctx.window,
        params=params,
        age_bins=age_bins,
        states=states,
        discarded=discarded,
    )


def write_dashboard(run: DashboardRun, out_dir: Path, config: AppConfig) -> dict[str, Path]:
    paths = build_output_paths(out_dir)
    extension = "parquet" if config.outputs.tables_format == "parquet" else "csv"
    written: dict[str, Path] = {}

    for state in run.states:
        if state.result is None:
            continue
        for table_name, table in state.result.tables.items():
            key = f"{state.widget}__{table_name}"
            written[key] = write_table(
                table,
                paths.tables / f"{key}.{extension}",
                fmt=config.outputs.tables_format,
            )
        written[state.widget] = write_summary(
            state.result.summary,
            paths.summary / f"{state.widget}.json",
        )

    overview = {
        "window": {"start": run.window.start.isoformat(), "end": run.window.end.isoformat()},
        "range_token": run.params.range_token,
        "doctor_id": run.params.doctor_id,
        "age_bins": {
            "source": run.age_bins.source,
            "bins": serialize_bins(run.age_bins.bins),
            "warnings": list(run.age_bins.warnings),
        },
        "widgets": {
            state.widget: {"status": state.status, "error": state.error} for state in run.states
        },
    }
    written["dashboard"] = write_summary(overview, paths.summary / "dashboard.json")
    return written


def run_dashboard(
    csv_path: Path | None,
    out_dir: Path,
    config: AppConfig,
    params: WidgetParams,
    store: AgeSettingsStore | None = None,
    now: datetime | pd.Timestamp | None = None,
) -> DashboardRun:
    current_time = pd.Timestamp.now(tz=config.time.timezone) if now is None else pd.Timestamp(now)
    if current_time.tzinfo is None:
        current_time = current_time.tz_localize(config.time.timezone)
    visits = prepare_visits(csv_path=csv_path, config=config, now=current_time)
    run = build_dashboard(visits, params, now=current_time, config=config, store=store)
    write_dashboard(run, out_dir=out_dir, config=config)
    if run.failed:
        LOGGER.warning("%d widget(s) degraded", len(run.failed))
    return run
