"""CTE synthesis for current-period vs previous-year aggregates.

each source table gets two CTEs with identical select lists: <table>_current
filtered on the requested period and <table>_previous filtered on the same
period one year back. previous-year columns get an _ly suffix so both can sit
side by side in the final select without aliasing gymnastics.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from yoyforge.models.dimension import DimensionFieldPair
from yoyforge.models.metric import MetricRequest

MetricsByTable = Mapping[str, Sequence[MetricRequest]]


@dataclass(frozen=True)
class CTE:
    """One named sub-query of the final WITH clause."""

    name: str
    sql: str
    source_metrics: tuple[MetricRequest, ...]


def current_cte(table: str) -> str:
    return f"{table}_current"


def previous_cte(table: str) -> str:
    return f"{table}_previous"


def group_metrics_by_table(
    metrics: Iterable[MetricRequest], primary_table: str | None = None
) -> dict[str, list[MetricRequest]]:
    """Group metrics by source table, primary table first.

    the grouped query anchors every LEFT JOIN on the primary (fact) table, so
    it has to come first. the remaining tables keep request order.
    """
    grouped: dict[str, list[MetricRequest]] = {}
    for metric in metrics:
        grouped.setdefault(metric.table, []).append(metric)

    if primary_table in grouped:
        rest = {t: m for t, m in grouped.items() if t != primary_table}
        return {primary_table: grouped[primary_table], **rest}
    return grouped


def trimmed(column: str) -> str:
    """Whitespace-trimmed text form of a column.

    dimension ids come in as varchar in some tables and integers in others,
    casting first keeps the join keys comparable.
    """
    return f"trim(CAST({column} AS VARCHAR))"


class CTEBuilder:
    """Builds the per-table CTE pairs.

    table_prefix is prepended to the physical table name only - CTE names
    always use the logical table name from the metric config.
    """

    def __init__(self, table_prefix: str = "") -> None:
        self.table_prefix = table_prefix

    def physical_table(self, table: str) -> str:
        return f"{self.table_prefix}{table}"

    def build(
        self,
        metrics_by_table: MetricsByTable,
        current_where: str,
        previous_where: str,
    ) -> list[CTE]:
        """CTE pairs without GROUP BY - each CTE yields exactly one row."""
        ctes: list[CTE] = []
        for table, table_metrics in metrics_by_table.items():
            ctes.append(self._cte(table, table_metrics, current_where, previous=False))
            ctes.append(self._cte(table, table_metrics, previous_where, previous=True))
        return ctes

    def build_grouped(
        self,
        metrics_by_table: MetricsByTable,
        current_where: str,
        previous_where: str,
        dimension: DimensionFieldPair,
    ) -> list[CTE]:
        """CTE pairs grouped by a dimension.

        when the dimension has a separate name column both are selected and
        grouped by position (1, 2), otherwise just the id (1).
        """
        dimension_selects = [f"{trimmed(dimension.id_field)} AS {dimension.id_field}"]
        if dimension.has_name_field:
            dimension_selects.append(f"{trimmed(dimension.name_field)} AS {dimension.name_field}")
        group_by = "1, 2" if dimension.has_name_field else "1"

        ctes: list[CTE] = []
        for table, table_metrics in metrics_by_table.items():
            ctes.append(
                self._cte(
                    table, table_metrics, current_where,
                    previous=False, dimension_selects=dimension_selects, group_by=group_by,
                )
            )
            ctes.append(
                self._cte(
                    table, table_metrics, previous_where,
                    previous=True, dimension_selects=dimension_selects, group_by=group_by,
                )
            )
        return ctes

    def _cte(
        self,
        table: str,
        table_metrics: Sequence[MetricRequest],
        where: str,
        *,
        previous: bool,
        dimension_selects: Sequence[str] = (),
        group_by: str | None = None,
    ) -> CTE:
        suffix = "_ly" if previous else ""
        name = previous_cte(table) if previous else current_cte(table)
        # aggregates over no rows are NULL in duckdb, the comparison wants 0
        selects = [
            *dimension_selects,
            *(f"coalesce({m.sql_expr()}, 0) AS {m.alias}{suffix}" for m in table_metrics),
        ]

        lines = [
            f"{name} AS (",
            f"  SELECT {', '.join(selects)}",
            f"  FROM {self.physical_table(table)}",
        ]
        if where:
            lines.append(f"  {where}")
        if group_by:
            lines.append(f"  GROUP BY {group_by}")
        lines.append(")")

        return CTE(name=name, sql="\n".join(lines), source_metrics=tuple(table_metrics))
