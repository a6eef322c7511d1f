from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from clinic_insights.io.write import write_summary, write_table


@dataclass(frozen=True)
class _Bin:
    label: str
    start: int


def test_write_summary_serializes_analytics_values(tmp_path: Path) -> None:
    path = tmp_path / "summary" / "visits.json"

    write_summary(
        {
            "count": np.int64(4),
            "average": np.float32(2.5),
            "changed": np.bool_(True),
            "window_start": pd.Timestamp("2024-03-04 00:00", tz="UTC"),
            "bins": [_Bin(label="<30", start=0)],
            "labels": {"Male"},
        },
        path,
    )

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["count"] == 4
    assert payload["average"] == 2.5
    assert payload["changed"] is True
    assert payload["window_start"] == "2024-03-04T00:00:00+00:00"
    assert payload["bins"] == [{"label": "<30", "start": 0}]
    assert payload["labels"] == ["Male"]


def test_write_table_replaces_existing_output_without_temp_files(tmp_path: Path) -> None:
    path = tmp_path / "tables" / "gender__top.csv"
    write_table(pd.DataFrame({"label": ["Male"], "count": [1]}), path)

    write_table(pd.DataFrame({"label": ["Female"], "count": [3]}), path)

    assert pd.read_csv(path).to_dict("records") == [{"label": "Female", "count": 3}]
    assert [child.name for child in path.parent.iterdir()] == ["gender__top.csv"]


def test_write_table_rejects_unknown_format(tmp_path: Path) -> None:
    path = tmp_path / "tables" / "visits.xlsx"

    with pytest.raises(ValueError, match="Unsupported table format"):
        write_table(pd.DataFrame({"count": [1]}), path, fmt="xlsx")
    assert not path.exists()
