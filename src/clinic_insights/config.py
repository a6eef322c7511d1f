from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_DISCOVERY_CHANNELS = ["Friends and Family", "Google", "Facebook", "Instagram", "Other"]
DEFAULT_APPOINTMENT_TYPES = ["Booking", "Walk-in", "Emergency"]


class ColumnsConfig(BaseModel):
    visit_id: str = "appointment_id"
    occurred_at: str = "appointment_time"
    doctor_id: str = "doctor_id"
    patient_id: str = "patient_id"
    gender: str = "gender"
    date_of_birth: str = "date_of_birth"
    address: str = "address"
    discovery_channel: str = "how_did_you_get_to_know_us"
    appointment_type: str = "appointment_type"
    is_follow_up: str = "is_follow_up"
    consultation_start: str = "consultation_start_time"
    consultation_end: str = "consultation_end_time"
    latitude: str = "latitude"
    longitude: str = "longitude"


class TimeConfig(BaseModel):
    timezone: str = "Asia/Kolkata"


class CategoriesConfig(BaseModel):
    discovery_channels: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DISCOVERY_CHANNELS)
    )
    appointment_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_APPOINTMENT_TYPES)
    )
    genders: list[str] = Field(default_factory=lambda: ["Male", "Female"])


class AnalyticsConfig(BaseModel):
    top_k: int = Field(default=5, ge=1)
    percentage_decimals: int = Field(default=1, ge=0, le=4)
    heatmap_percentage_decimals: int = Field(default=2, ge=0, le=4)
    max_consultation_minutes: float = Field(default=120.0, gt=0.0)


class HospitalConfig(BaseModel):
    hospital_id: str = "default"
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)


class InputConfig(BaseModel):
    mode: Literal["csv", "postgres"] = "csv"
    db_url: str | None = None
    visits_view: str = "appointment_visits"
    filter_by_hospital: bool = False


class SettingsConfig(BaseModel):
    backend: Literal["file", "postgres"] = "file"
    path: str = "age_settings.json"
    db_url: str | None = None
    table_name: str = "hospitals"


class OutputsConfig(BaseModel):
    tables_format: Literal["parquet", "csv"] = "csv"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    columns: ColumnsConfig = Field(default_factory=ColumnsConfig)
    time: TimeConfig = Field(default_factory=TimeConfig)
    categories: CategoriesConfig = Field(default_factory=CategoriesConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    hospital: HospitalConfig = Field(default_factory=HospitalConfig)
    input: InputConfig = Field(default_factory=InputConfig)
    settings: SettingsConfig = Field(default_factory=SettingsConfig)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def _resolve_optional_path(path_value: str | None, base_dir: Path) -> str | None:
    if not path_value:
        return None
    candidate = Path(path_value)
    if candidate.is_absolute():
        return str(candidate)
    return str((base_dir / candidate).resolve())


def load_config(path: Path) -> AppConfig:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    config = AppConfig.model_validate(data)
    base_dir = path.resolve().parent

    config.settings.path = _resolve_optional_path(config.settings.path, base_dir) or ""
    config.input.db_url = (
        config.input.db_url or os.getenv("CLINIC_INSIGHTS_DB_URL") or os.getenv("DATABASE_URL")
    )
    config.settings.db_url = (
        config.settings.db_url
        or config.input.db_url
        or os.getenv("CLINIC_INSIGHTS_DB_URL")
        or os.getenv("DATABASE_URL")
    )
    return config
