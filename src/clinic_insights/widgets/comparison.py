from __future__ import annotations

from clinic_insights.analytics.filters import compile_filters, count_by
from clinic_insights.analytics.ranking import ranked_to_frame
from clinic_insights.widgets.base import Widget, WidgetContext, WidgetResult


class ComparisonWidget(Widget):
    """Visits matching the user's filters, counted by the chosen comparison field."""

    name = "custom_comparison"

    def run(self, ctx: WidgetContext) -> WidgetResult:
        compiled = compile_filters(ctx.params.filters)
        ranked = count_by(
            ctx.current,
            compiled.params,
            ctx.params.group_by,
            ctx.now,
            bins=ctx.dimensions.bins,
            decimals=ctx.config.analytics.heatmap_percentage_decimals,
        )
        summary = {
            "group_by": ctx.params.group_by,
            "params": compiled.params.as_dict(),
            "warnings": list(compiled.warnings),
            "total": sum(category.count for category in ranked),
        }
        return WidgetResult(
            widget=self.name,
            summary=summary,
            tables={"counts": ranked_to_frame(ranked)},
        )
