from __future__ import annotations

import json
from pathlib import Path

import typer

from clinic_insights.analytics.age_bins import (
    AgeBin,
    AgeBinEditor,
    AgeBinScope,
    load_age_bins,
    parse_bins,
)
from clinic_insights.analytics.filters import RANGE_FIELDS, FilterSpec, compile_filters
from clinic_insights.analytics.windows import RANGE_TOKENS
from clinic_insights.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from clinic_insights.errors import InsightsError
from clinic_insights.io.age_settings import build_settings_store
from clinic_insights.logging import configure_logging
from clinic_insights.paths import build_output_paths
from clinic_insights.pipeline.dashboard import run_dashboard
from clinic_insights.widgets.base import WidgetParams

app = typer.Typer(no_args_is_help=True, add_completion=False)


def _configure_logging(level: str | None = None) -> None:
    try:
        configure_logging(level)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _load_app_config(config_path: Path) -> AppConfig:
    return load_config(config_path)


def _require_csv_for_csv_mode(csv: Path | None, cfg: AppConfig) -> Path | None:
    if cfg.input.mode == "csv" and csv is None:
        raise typer.BadParameter(
            "Missing --csv. Required when input.mode='csv'. "
            "Set input.mode='postgres' and configure "
            "input.db_url/input.visits_view to read visits from Postgres."
        )
    return csv


def _parse_filter(raw: str) -> FilterSpec:
    """``field=value`` for categories; ``age=between:20:40``, ``age=below::30``, ``age=above:50``."""
    field_name, separator, rest = raw.partition("=")
    if not separator or not field_name.strip():
        raise typer.BadParameter(f"Filter must look like field=value: {raw!r}")
    field_name = field_name.strip()
    if field_name not in RANGE_FIELDS:
        return FilterSpec(field=field_name, value=rest.strip())

    operator, range_start, range_end = (rest.split(":") + ["", ""])[:3]
    operator = operator.strip() or "all"
    if operator not in {"all", "between", "below", "above"}:
        raise typer.BadParameter(f"Unsupported range operator in filter: {raw!r}")
    return FilterSpec(
        field=field_name,
        operator=operator,
        range_start=range_start.strip() or None,
        range_end=range_end.strip() or None,
    )


def _parse_bin(raw: str, index: int) -> dict[str, str]:
    start, separator, end = raw.partition(":")
    if not separator:
        raise typer.BadParameter(f"Age bin must look like START:END (use < or > for open ends): {raw!r}")
    return {"id": f"bin-{index}", "start": start.strip(), "end": end.strip()}


def _describe_bins(bins: list[AgeBin]) -> str:
    return ", ".join(age_bin.label for age_bin in bins)


@app.command()
def dashboard(
    csv: Path | None = typer.Option(None, exists=True, readable=True, resolve_path=True),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    range_token: str = typer.Option("1week", "--range", help="1day, 1week, 1month, 3months or custom."),
    start: str | None = typer.Option(None, help="Custom window start (with --range custom)."),
    end: str | None = typer.Option(None, help="Custom window end (with --range custom)."),
    doctor: str | None = typer.Option(None, help="Doctor id; omit for all doctors."),
    filters: list[str] = typer.Option([], "--filter", help="Comparison filter, e.g. gender=Male."),
    group_by: str = typer.Option("location", help="Comparison field for the custom widget."),
    series: str | None = typer.Option(None, help="Trend series to project out."),
    now: str | None = typer.Option(None, help="Evaluate the dashboard as of this instant."),
    log_level: str | None = typer.Option(None, help="Log level; defaults to CLINIC_INSIGHTS_LOG_LEVEL or INFO."),
) -> None:
    """Build every dashboard widget for one parameter set and write tables."""
    _configure_logging(log_level)
    if range_token not in RANGE_TOKENS:
        raise typer.BadParameter(f"--range must be one of: {', '.join(RANGE_TOKENS)}")
    cfg = _load_app_config(config)
    csv = _require_csv_for_csv_mode(csv=csv, cfg=cfg)
    params = WidgetParams(
        range_token=range_token,
        doctor_id=doctor,
        custom_start=start,
        custom_end=end,
        filters=tuple(_parse_filter(raw) for raw in filters),
        group_by=group_by,
        selected_series=series,
    )
    paths = build_output_paths(out)
    try:
        run = run_dashboard(
            csv_path=csv,
            out_dir=paths.root,
            config=cfg,
            params=params,
            store=build_settings_store(cfg.settings),
            now=now,
        )
    except InsightsError as exc:
        raise typer.BadParameter(str(exc)) from exc
    ok = sum(1 for state in run.states if state.ok)
    typer.echo(f"Dashboard complete. Widgets: {ok}/{len(run.states)} ok. Output: {paths.root}")


@app.command("show-age-bins")
def show_age_bins(
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    doctor: str | None = typer.Option(None, help="Doctor id; omit for the hospital-wide bins."),
) -> None:
    """Print the age bins in effect for a doctor (or all doctors)."""
    _configure_logging()
    cfg = _load_app_config(config)
    store = build_settings_store(cfg.settings)
    loaded = load_age_bins(store, AgeBinScope(hospital_id=cfg.hospital.hospital_id, doctor_id=doctor))
    typer.echo(f"Source: {loaded.source}")
    typer.echo(f"Bins: {_describe_bins(loaded.bins)}")
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}")


@app.command("save-age-bins")
def save_age_bins(
    bins: list[str] = typer.Option(..., "--bin", help="START:END, e.g. <:20, 20:25, 50:>."),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    doctor: str | None = typer.Option(None, help="Doctor id; omit to save the hospital-wide bins."),
) -> None:
    """Replace the age bins of one scope, keeping every other scope."""
    _configure_logging()
    cfg = _load_app_config(config)
    try:
        parsed = parse_bins([_parse_bin(raw, index) for index, raw in enumerate(bins, start=1)])
    except InsightsError as exc:
        raise typer.BadParameter(str(exc)) from exc

    store = build_settings_store(cfg.settings)
    scope = AgeBinScope(hospital_id=cfg.hospital.hospital_id, doctor_id=doctor)
    editor = AgeBinEditor(bins=parsed)
    try:
        saved = editor.commit(store, scope)
    except InsightsError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Saved {len(saved)} age bins for scope '{scope.key}': {_describe_bins(saved)}")


@app.command("compile-filters")
def compile_filters_command(
    filters: list[str] = typer.Option([], "--filter", help="field=value or age=between:20:40."),
) -> None:
    """Show the query parameters a set of comparison filters compiles to."""
    _configure_logging()
    compiled = compile_filters([_parse_filter(raw) for raw in filters])
    typer.echo(
        json.dumps(
            {"params": compiled.params.as_dict(), "warnings": list(compiled.warnings)},
            indent=2,
            sort_keys=True,
        )
    )


if __name__ == "__main__":
    app()
