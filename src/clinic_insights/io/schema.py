from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import date, datetime
from typing import Sequence

import pandas as pd

from clinic_insights.config import ColumnsConfig

REQUIRED_COLUMNS = ["visit_id", "occurred_at", "patient_id"]


@dataclass(frozen=True)
class VisitRecord:
    """One appointment joined to its patient."""

    visit_id: str
    occurred_at: datetime
    doctor_id: str | None
    patient_id: str
    gender: str | None = None
    date_of_birth: date | None = None
    address: str | None = None
    discovery_channel: str | None = None
    appointment_type: str | None = None
    is_follow_up: bool = False
    consultation_start: datetime | None = None
    consultation_end: datetime | None = None
    latitude: float | None = None
    longitude: float | None = None


CANONICAL_COLUMNS = [field.name for field in fields(VisitRecord)]
OPTIONAL_COLUMNS = [name for name in CANONICAL_COLUMNS if name not in REQUIRED_COLUMNS]


def normalize_columns(df: pd.DataFrame, columns: ColumnsConfig) -> pd.DataFrame:
    """Rename source columns to canonical visit names; absent optional columns become null."""
    rename_map = {getattr(columns, name): name for name in CANONICAL_COLUMNS}
    missing = [
        source
        for source, canonical in rename_map.items()
        if canonical in REQUIRED_COLUMNS and source not in df.columns
    ]
    if missing:
        missing_str = ", ".join(missing)
        raise ValueError(f"Missing required visit columns: {missing_str}")

    working = df.rename(columns=rename_map)
    for name in OPTIONAL_COLUMNS:
        if name not in working.columns:
            working[name] = None
    return working[CANONICAL_COLUMNS]



def records_to_frame(records: Sequence[VisitRecord]) -> pd.DataFrame:
    """Canonical visits frame for callers that already hold ``VisitRecord`` rows."""
    rows = [asdict(record) for record in records]
    if not rows:
        return pd.DataFrame(columns=CANONICAL_COLUMNS)
    return pd.DataFrame(rows, columns=CANONICAL_COLUMNS)
