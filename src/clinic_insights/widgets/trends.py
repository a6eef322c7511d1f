from __future__ import annotations

from clinic_insights.analytics import trends
from clinic_insights.analytics.dimensions import get_dimension
from clinic_insights.analytics.ranking import UNKNOWN_LABEL, rank, top_k
from clinic_insights.widgets.base import Widget, WidgetContext, WidgetResult


class TrendWidget(Widget):
    def __init__(self, name: str, dimension: str, series_top_k: int | None = None) -> None:
        self.name = name
        self.dimension = dimension
        self.series_top_k = series_top_k

    def _series_domain(self, ctx: WidgetContext) -> list[str] | None:
        dimension = get_dimension(self.dimension)
        domain = dimension.domain(ctx.dimensions)
        if self.series_top_k is None:
            return None if domain is None else list(domain)
        ranked = rank(ctx.current, dimension.key(ctx.dimensions), domain=domain)
        known = [category for category in ranked if category.label != UNKNOWN_LABEL]
        return [category.label for category in top_k(known, self.series_top_k) if category.count > 0]

    def run(self, ctx: WidgetContext) -> WidgetResult:
        dimension = get_dimension(self.dimension)
        table = trends.build(
            ctx.current,
            dimension.key(ctx.dimensions),
            series_domain=self._series_domain(ctx),
        )
        selected = ctx.params.selected_series
        tables = {"series": table.to_frame()}
        if selected is not None:
            tables["selected"] = trends.select_series(table, selected).to_frame()
        summary = {
            "dimension": self.dimension,
            "n_days": len(table.dates),
            "labels": list(table.labels),
            "totals": {s.label: s.total for s in table.series},
            "selected_series": selected,
        }
        return WidgetResult(widget=self.name, summary=summary, tables=tables)
