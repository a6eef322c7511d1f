from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import pandas as pd

from clinic_insights.analytics.crosstab import KeySpec, percentage, resolve_labels

UNKNOWN_LABEL = "Unknown"


@dataclass(frozen=True)
class RankedCategory:
    label: str
    count: int
    percentage: float


def _labels_with_unknown(df: pd.DataFrame, key: KeySpec) -> pd.Series:
    labels = resolve_labels(df, key).astype(object)

    def _fill(value: object) -> object:
        if isinstance(value, (list, tuple)):
            return list(value) if value else [UNKNOWN_LABEL]
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return UNKNOWN_LABEL
        text = str(value).strip()
        return text or UNKNOWN_LABEL

    return labels.map(_fill).explode().astype(str)


def rank(
    df: pd.DataFrame,
    key: KeySpec,
    domain: Sequence[str] | None = None,
    decimals: int = 1,
) -> list[RankedCategory]:
    """Categories by descending count; ties keep first-seen order.

    ``domain`` lists categories that must appear even with a zero count.
    Unobserved domain labels follow every observed label, in domain order.
    """
    if df.empty:
        labels = pd.Series([], dtype=str)
    else:
        labels = _labels_with_unknown(df.reset_index(drop=True), key)

    counts: dict[str, int] = {}
    if not labels.empty:
        # groupby(sort=False) keeps first-appearance order.
        for label, count in labels.groupby(labels, sort=False).size().items():
            counts[str(label)] = counts.get(str(label), 0) + int(count)
    ordered = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    ordered.extend((label, 0) for label in dict.fromkeys(domain or []) if label not in counts)

    total = int(len(labels))
    return [
        RankedCategory(label=label, count=count, percentage=percentage(count, total, decimals))
        for label, count in ordered
    ]


def top_k(ranked: Sequence[RankedCategory], k: int) -> list[RankedCategory]:
    if k < 0:
        raise ValueError("k must be >= 0")
    return list(ranked[:k])


def rest_to_all(ranked: Sequence[RankedCategory]) -> list[RankedCategory]:
    return list(ranked)


def ranked_to_frame(ranked: Sequence[RankedCategory]) -> pd.DataFrame:
    return pd.DataFrame(
        [{"label": c.label, "count": c.count, "percentage": c.percentage} for c in ranked],
        columns=["label", "count", "percentage"],
    )
