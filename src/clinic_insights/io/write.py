from __future__ import annotations

import dataclasses
import json
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd


def _json_default(value: Any) -> Any:
    if isinstance(value, (pd.Timestamp, datetime, date)):
        return value.isoformat()
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _replace_atomically(path: Path, write: Any) -> Path:
    """Write through a sibling temp file so readers never see a half-written output."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        write(tmp_path)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path


def write_table(df: pd.DataFrame, path: Path, fmt: str = "csv") -> Path:
    if fmt == "parquet":
        return _replace_atomically(path, lambda target: df.to_parquet(target, index=False))
    if fmt == "csv":
        return _replace_atomically(path, lambda target: df.to_csv(target, index=False))
    raise ValueError(f"Unsupported table format: {fmt}")


def write_summary(data: dict[str, Any], path: Path) -> Path:
    text = json.dumps(data, indent=2, sort_keys=True, default=_json_default)
    return _replace_atomically(path, lambda target: target.write_text(text, encoding="utf-8"))
