from __future__ import annotations

import pandas as pd

from clinic_insights.analytics.crosstab import (
    CrossTabResult,
    aggregate,
    breakdown,
    percent_of_grand_total,
    percent_within_row,
)
from clinic_insights.analytics.dimensions import get_dimension
from clinic_insights.analytics.ranking import UNKNOWN_LABEL, rank, top_k
from clinic_insights.widgets.base import Widget, WidgetContext, WidgetResult


def _matrix_frame(result: CrossTabResult, heatmap_decimals: int, row_decimals: int) -> pd.DataFrame:
    frame = result.to_long_frame()
    of_total = percent_of_grand_total(result, heatmap_decimals)
    within_row = percent_within_row(result, row_decimals)
    frame["pct_of_total"] = [value for row in of_total for value in row]
    frame["pct_of_row"] = [value for row in within_row for value in row]
    return frame


def _breakdown_frame(result: CrossTabResult, decimals: int) -> pd.DataFrame:
    rows = [
        {
            "row": row_label,
            "rank": position,
            "col": entry.label,
            "count": entry.count,
            "percentage": entry.percentage,
        }
        for row_label in result.row_labels
        for position, entry in enumerate(breakdown(result, row_label, decimals), start=1)
    ]
    return pd.DataFrame(rows, columns=["row", "rank", "col", "count", "percentage"])


class CrossTabWidget(Widget):
    """Heatmap of one dimension against another.

    ``row_top_k`` keeps only the busiest row labels, for open-ended
    dimensions such as location.
    """

    def __init__(
        self,
        name: str,
        row_dimension: str,
        col_dimension: str,
        row_top_k: int | None = None,
    ) -> None:
        self.name = name
        self.row_dimension = row_dimension
        self.col_dimension = col_dimension
        self.row_top_k = row_top_k

    def _row_domain(self, ctx: WidgetContext) -> list[str] | None:
        dimension = get_dimension(self.row_dimension)
        domain = dimension.domain(ctx.dimensions)
        if self.row_top_k is None:
            return None if domain is None else list(domain)
        ranked = rank(ctx.current, dimension.key(ctx.dimensions), domain=domain)
        known = [category for category in ranked if category.label != UNKNOWN_LABEL]
        return [category.label for category in top_k(known, self.row_top_k) if category.count > 0]

    def run(self, ctx: WidgetContext) -> WidgetResult:
        rows = get_dimension(self.row_dimension)
        cols = get_dimension(self.col_dimension)
        result = aggregate(
            ctx.current,
            rows.key(ctx.dimensions),
            cols.key(ctx.dimensions),
            col_domain=cols.domain(ctx.dimensions),
            row_domain=self._row_domain(ctx),
        )
        analytics = ctx.config.analytics
        summary = {
            "rows": self.row_dimension,
            "cols": self.col_dimension,
            "row_labels": list(result.row_labels),
            "col_labels": list(result.col_labels),
            "grand_total": result.grand_total,
            "n_records": result.n_records,
        }
        return WidgetResult(
            widget=self.name,
            summary=summary,
            tables={
                "matrix": _matrix_frame(
                    result,
                    heatmap_decimals=analytics.heatmap_percentage_decimals,
                    row_decimals=analytics.percentage_decimals,
                ),
                "breakdown": _breakdown_frame(result, analytics.percentage_decimals),
            },
        )
