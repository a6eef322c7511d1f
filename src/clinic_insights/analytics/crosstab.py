"""Two-dimensional frequency tables over visit records.

Every heatmap on the dashboard is one call to :func:`aggregate` with a
different pair of keys. A key is either a column name or a callable that
takes the visits frame and returns a Series aligned to its index. Values may
be a single label or a list of labels; a visit contributes once to every
(row, column) combination of its labels.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence, Union

import pandas as pd

KeySpec = Union[str, Callable[[pd.DataFrame], pd.Series]]


@dataclass(frozen=True)
class CrossTabResult:
    row_labels: tuple[str, ...]
    col_labels: tuple[str, ...]
    matrix: tuple[tuple[int, ...], ...]
    row_totals: tuple[int, ...]
    grand_total: int
    n_records: int = 0

    def row_index(self, row_label: str) -> int:
        try:
            return self.row_labels.index(row_label)
        except ValueError as exc:
            raise KeyError(row_label) from exc

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(
            list(self.matrix),
            index=pd.Index(list(self.row_labels), name="row"),
            columns=pd.Index(list(self.col_labels), name="col"),
            dtype="int64",
        )
        frame["row_total"] = list(self.row_totals)
        return frame

    def to_long_frame(self) -> pd.DataFrame:
        rows = [
            {"row": row_label, "col": col_label, "count": self.matrix[r][c]}
            for r, row_label in enumerate(self.row_labels)
            for c, col_label in enumerate(self.col_labels)
        ]
        return pd.DataFrame(rows, columns=["row", "col", "count"])


@dataclass(frozen=True)
class BreakdownEntry:
    label: str
    count: int
    percentage: float


def resolve_labels(df: pd.DataFrame, key: KeySpec) -> pd.Series:
    if callable(key):
        labels = key(df)
        if not isinstance(labels, pd.Series):
            labels = pd.Series(list(labels), index=df.index)
        return labels
    if key not in df.columns:
        raise KeyError(f"visits frame has no column '{key}'")
    return df[key]


def _explode_labels(labels: pd.Series) -> pd.Series:
    exploded = labels.astype(object).explode()
    exploded = exploded[exploded.notna()]
    exploded = exploded[exploded.astype(str).str.strip() != ""]
    return exploded.astype(str)


def label_pairs(df: pd.DataFrame, row_key: KeySpec, col_key: KeySpec) -> pd.DataFrame:
    """One row per (visit, row label, column label) combination."""
    if df.empty:
        return pd.DataFrame({"row": pd.Series(dtype=str), "col": pd.Series(dtype=str)})
    df = df.reset_index(drop=True)
    rows = _explode_labels(resolve_labels(df, row_key)).rename("row")
    cols = _explode_labels(resolve_labels(df, col_key)).rename("col")
    pairs = pd.merge(
        rows.to_frame(),
        cols.to_frame(),
        left_index=True,
        right_index=True,
        how="inner",
        sort=False,
    )
    return pairs.reset_index(drop=True)


def _ordered_labels(observed: pd.Series, domain: Sequence[str] | None) -> list[str]:
    if domain is not None:
        return [str(label) for label in dict.fromkeys(domain)]
    return [str(label) for label in pd.unique(observed)]


def aggregate(
    df: pd.DataFrame,
    row_key: KeySpec,
    col_key: KeySpec,
    col_domain: Sequence[str] | None = None,
    row_domain: Sequence[str] | None = None,
) -> CrossTabResult:
    """Count visits by (row label, column label).

    Labels outside an explicit domain are dropped; without a domain the
    labels keep their order of first appearance. Totals are always derived
    from the matrix, so ``sum(matrix[r]) == row_totals[r]`` and
    ``sum(row_totals) == grand_total`` hold even when a visit matched
    several labels and ``grand_total`` exceeds ``n_records``.
    """
    pairs = label_pairs(df, row_key, col_key)
    row_labels = _ordered_labels(pairs["row"], row_domain)
    col_labels = _ordered_labels(pairs["col"], col_domain)

    pairs = pairs[pairs["row"].isin(row_labels) & pairs["col"].isin(col_labels)]
    if pairs.empty:
        counts = pd.DataFrame(0, index=row_labels, columns=col_labels, dtype="int64")
    else:
        counts = (
            pairs.groupby(["row", "col"], sort=False)
            .size()
            .unstack(fill_value=0)
            .reindex(index=row_labels, columns=col_labels, fill_value=0)
            .astype("int64")
        )

    matrix = tuple(tuple(int(value) for value in row) for row in counts.to_numpy())
    row_totals = tuple(sum(row) for row in matrix)
    return CrossTabResult(
        row_labels=tuple(row_labels),
        col_labels=tuple(col_labels),
        matrix=matrix,
        row_totals=row_totals,
        grand_total=sum(row_totals),
        n_records=int(len(df)),
    )


def percentage(count: float, total: float, decimals: int = 1) -> float:
    if not total:
        return 0.0
    return round((float(count) / float(total)) * 100.0, decimals)


def breakdown(result: CrossTabResult, row_label: str, decimals: int = 1) -> list[BreakdownEntry]:
    """Column counts of one row, largest first, as a share of that row's total."""
    index = result.row_index(row_label)
    row_total = result.row_totals[index]
    entries = [
        BreakdownEntry(
            label=col_label,
            count=count,
            percentage=percentage(count, row_total, decimals),
        )
        for col_label, count in zip(result.col_labels, result.matrix[index])
    ]
    return sorted(entries, key=lambda entry: entry.count, reverse=True)


def percent_within_row(result: CrossTabResult, decimals: int = 1) -> tuple[tuple[float, ...], ...]:
    return tuple(
        tuple(percentage(count, row_total, decimals) for count in row)
        for row, row_total in zip(result.matrix, result.row_totals)
    )


def percent_of_grand_total(
    result: CrossTabResult,
    decimals: int = 2,
) -> tuple[tuple[float, ...], ...]:
    return tuple(
        tuple(percentage(count, result.grand_total, decimals) for count in row)
        for row in result.matrix
    )
