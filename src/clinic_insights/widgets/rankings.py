from __future__ import annotations

from clinic_insights.analytics.dimensions import get_dimension
from clinic_insights.analytics.ranking import rank, ranked_to_frame, rest_to_all, top_k
from clinic_insights.widgets.base import Widget, WidgetContext, WidgetResult


class RankWidget(Widget):
    """Share of visits per label of one dimension, with a top-k cut and the full list."""

    def __init__(self, name: str, dimension: str, k: int = 5, seed_domain: bool = True) -> None:
        self.name = name
        self.dimension = dimension
        self.k = k
        self.seed_domain = seed_domain

    def run(self, ctx: WidgetContext) -> WidgetResult:
        dimension = get_dimension(self.dimension)
        ranked = rank(
            ctx.current,
            dimension.key(ctx.dimensions),
            domain=dimension.domain(ctx.dimensions) if self.seed_domain else None,
            decimals=ctx.config.analytics.percentage_decimals,
        )
        top = top_k(ranked, self.k)
        summary = {
            "dimension": self.dimension,
            "total": sum(category.count for category in ranked),
            "n_visits": int(len(ctx.current)),
            "n_labels": len(ranked),
            "top_label": top[0].label if top and top[0].count > 0 else None,
        }
        return WidgetResult(
            widget=self.name,
            summary=summary,
            tables={
                "top": ranked_to_frame(top),
                "all": ranked_to_frame(rest_to_all(ranked)),
            },
        )
