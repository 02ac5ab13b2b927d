"""SQL compiler for year-over-year comparison queries.

this is where the pieces come together - translating a metric list, a filter
set and an optional group-by into one parameterized statement.

the basic flow:
  1. group metrics by source table (primary fact table first)
  2. shift the filters one year back for the previous-period CTEs
  3. build table-aware WHERE clauses and a current/previous CTE pair per table
  4. select current, last year and % variation for every metric
  5. add whichever derived metrics the requested base metrics can feed
  6. join everything - cross joins for the single-row shape, left joins on
     the dimension id for the grouped shape

the compiler never touches the database. it gets the column map from the
caller (see ComparisonStore) so it can be tested with canned schemas.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import sqlglot
from sqlglot.errors import SqlglotError

from yoyforge.compiler.conditions import ConditionBuilder
from yoyforge.compiler.cte_builder import (
    CTE,
    CTEBuilder,
    current_cte,
    group_metrics_by_table,
    previous_cte,
    trimmed,
)
from yoyforge.compiler.derived import DerivedMetricEngine
from yoyforge.discovery import ColumnMap
from yoyforge.errors import InvalidFieldError, UnsupportedQueryError
from yoyforge.models.dimension import DimensionFieldPair
from yoyforge.models.filter import FilterCondition
from yoyforge.models.metric import MetricRequest
from yoyforge.parser.loader import MetricCatalog

logger = logging.getLogger(__name__)

TOTAL_COUNT_COLUMN = "_total_count"
ORDER_DIRECTIONS = ("asc", "desc")


@dataclass
class CompiledQuery:
    """A statement ready to execute, plus what went into it.

    the extra fields aren't needed to run the query but tests and the cli
    use them to explain why a table was or wasn't joined.
    """

    sql: str
    params: dict[str, Any] = field(default_factory=dict)
    ctes: list[CTE] = field(default_factory=list)
    tables: list[str] = field(default_factory=list)
    tables_with_dimension: list[str] = field(default_factory=list)
    skipped_tables: list[str] = field(default_factory=list)
    derived_metrics: list[str] = field(default_factory=list)


def percent_variation(current: str, previous: str) -> str:
    """% change from previous to current, exactly 0 when previous is 0."""
    return (
        f"CASE WHEN {previous} != 0 "
        f"THEN (({current} - {previous}) / {previous}) * 100 ELSE 0 END"
    )


class ComparisonCompiler:
    """Compiles comparison requests into SQL.

    stateless - holds the catalog and the sub-builders, nothing per request.
    """

    def __init__(self, catalog: MetricCatalog, table_prefix: str = "", dialect: str = "duckdb") -> None:
        self.catalog = catalog
        self.dialect = dialect
        self.conditions = ConditionBuilder(
            date_field=catalog.date_field,
            exclusions=catalog.filter_exclusions,
        )
        self.ctes = CTEBuilder(table_prefix)
        self.derived = DerivedMetricEngine(list(catalog.derived_metrics.values()), dialect)

    def group_metrics(self, metrics: Iterable[MetricRequest]) -> dict[str, list[MetricRequest]]:
        grouped = group_metrics_by_table(metrics, self.catalog.primary_table)
        if not grouped:
            raise UnsupportedQueryError("At least one metric is required")
        return grouped

    def physical_tables(self, metrics: Iterable[MetricRequest]) -> list[str]:
        """Physical names of the tables the metrics read from, in first-seen order."""
        return list(dict.fromkeys(self.ctes.physical_table(m.table) for m in metrics))

    def compile_comparison(
        self,
        metrics: Sequence[MetricRequest],
        filters: Sequence[FilterCondition],
        column_map: ColumnMap,
    ) -> CompiledQuery:
        """Single-row shape: every table's CTE pair cross joined.

        each CTE aggregates without GROUP BY so it yields exactly one row and
        the cross join yields one row too.
        """
        metrics_by_table = self.group_metrics(metrics)
        previous_filters = self.conditions.shift_dates(filters, -1)

        params: dict[str, Any] = {}
        ctes: list[CTE] = []
        selects: list[str] = []

        for table, table_metrics in metrics_by_table.items():
            current_where, previous_where = self._table_where(
                table, filters, previous_filters, params, column_map
            )
            ctes.extend(self.ctes.build({table: table_metrics}, current_where, previous_where))
            selects.extend(self._metric_selects(table, table_metrics))

        derived = self.derived.apply(selects, metrics_by_table)

        tables = list(metrics_by_table)
        joined = [previous_cte(tables[0])]
        for table in tables[1:]:
            joined.extend([current_cte(table), previous_cte(table)])
        body = [f"FROM {current_cte(tables[0])}", *(f"CROSS JOIN {name}" for name in joined)]

        return CompiledQuery(
            sql=self._assemble(ctes, selects, body),
            params=params,
            ctes=ctes,
            tables=tables,
            derived_metrics=derived,
        )

    def compile_grouped(
        self,
        metrics: Sequence[MetricRequest],
        filters: Sequence[FilterCondition],
        group_by: str,
        column_map: ColumnMap,
        *,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | None = None,
        order_direction: str = "desc",
    ) -> CompiledQuery:
        """Multi-row shape: one row per dimension value.

        tables without the dimension column can't be joined on it, so their
        metrics come out as literal zeros instead of dropping the table's
        contribution to the whole request.
        """
        dimension = self.resolve_dimension(group_by)
        self._validate_pagination(limit, offset)
        direction = self.validate_order_direction(order_direction)

        metrics_by_table = self.group_metrics(metrics)
        previous_filters = self.conditions.shift_dates(filters, -1)
        id_field = dimension.id_field

        def has_column(table: str, column: str) -> bool:
            return column in column_map.get(self.ctes.physical_table(table), frozenset())

        tables_with_dimension = [t for t in metrics_by_table if has_column(t, id_field)]
        if not tables_with_dimension:
            raise UnsupportedQueryError(
                f"None of the requested tables has the '{id_field}' column",
                field=group_by,
            )
        skipped_tables = [t for t in metrics_by_table if t not in tables_with_dimension]
        # name columns often live only in the fact table
        tables_with_name = [
            t for t in tables_with_dimension
            if dimension.has_name_field and has_column(t, dimension.name_field)
        ]

        selects = [
            self._coalesce(tables_with_dimension, id_field, "id"),
            self._coalesce(tables_with_name, dimension.name_field, "name")
            if tables_with_name
            else self._coalesce(tables_with_dimension, id_field, "name"),
        ]
        if limit is not None:
            selects.append(f"count(*) OVER () AS {TOTAL_COUNT_COLUMN}")

        params: dict[str, Any] = {}
        ctes: list[CTE] = []
        for table, table_metrics in metrics_by_table.items():
            if table in skipped_tables:
                for metric in table_metrics:
                    selects.extend([
                        f"0 AS {metric.alias}",
                        f"0 AS {metric.alias}_ly",
                        f"0 AS {metric.alias}_vs_last_year",
                    ])
                continue

            current_where, previous_where = self._table_where(
                table, filters, previous_filters, params, column_map
            )
            table_dimension = dimension if table in tables_with_name else DimensionFieldPair.single(id_field)
            ctes.extend(
                self.ctes.build_grouped({table: table_metrics}, current_where, previous_where, table_dimension)
            )
            selects.extend(self._metric_selects(table, table_metrics))

        derived = self.derived.apply(selects, metrics_by_table, skipped_tables)

        anchor = tables_with_dimension[0]
        order_field = self.validate_order_by(
            order_by or metrics_by_table[anchor][0].alias, metrics_by_table, derived
        )

        anchor_key = f"{current_cte(anchor)}.{id_field}"
        body = [
            f"FROM {current_cte(anchor)}",
            f"LEFT JOIN {previous_cte(anchor)} ON {anchor_key} = {previous_cte(anchor)}.{id_field}",
        ]
        for table in tables_with_dimension[1:]:
            for name in (current_cte(table), previous_cte(table)):
                body.append(f"LEFT JOIN {name} ON {anchor_key} = {name}.{id_field}")
        body.append(f"ORDER BY {order_field} {direction}")
        if limit is not None:
            body.append(f"LIMIT {limit}" + (f" OFFSET {offset}" if offset is not None else ""))

        logger.debug(
            "Grouped by %s: joined %s, zeroed %s", group_by, tables_with_dimension, skipped_tables
        )
        return CompiledQuery(
            sql=self._assemble(ctes, selects, body),
            params=params,
            ctes=ctes,
            tables=list(metrics_by_table),
            tables_with_dimension=tables_with_dimension,
            skipped_tables=skipped_tables,
            derived_metrics=derived,
        )

    def compile_distinct(
        self,
        table: str,
        column: str,
        filters: Sequence[FilterCondition],
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> CompiledQuery:
        """Distinct non-blank values of a column, A-Z - used to fill filter pickers.

        filters are applied as-is, not table-aware: the caller is asking about
        one specific table.
        """
        self.conditions.validate_field_name(table)
        self.conditions.validate_field_name(column, table=table)
        self._validate_pagination(limit, offset)

        params: dict[str, Any] = {}
        predicates = self.conditions.build_predicates(filters, params, "filter")
        value = trimmed(column)
        predicates.append(f"{value} != ''")

        lines = [
            f"SELECT DISTINCT {value} AS value",
            f"FROM {self.ctes.physical_table(table)}",
            self.conditions.where(predicates),
            "ORDER BY value ASC",
        ]
        if limit is not None:
            lines.append(f"LIMIT {limit}")
        if offset:
            lines.append(f"OFFSET {offset}")

        return CompiledQuery(sql="\n".join(lines), params=params, tables=[table])

    def resolve_dimension(self, group_by: str) -> DimensionFieldPair:
        self.conditions.validate_field_name(group_by)
        return self.catalog.dimension_pair(group_by)

    def validate_order_by(
        self,
        order_by: str,
        metrics_by_table: Mapping[str, Sequence[MetricRequest]],
        derived_metrics: Sequence[str],
    ) -> str:
        """Only id, name, requested metric columns and emitted derived metrics can be sorted on."""
        valid = ["id", "name"]
        for table_metrics in metrics_by_table.values():
            for metric in table_metrics:
                valid.extend([metric.alias, f"{metric.alias}_ly", f"{metric.alias}_vs_last_year"])
        valid.extend(derived_metrics)

        if order_by not in valid:
            raise InvalidFieldError(
                f"Invalid orderBy field: {order_by}. Must be one of: {', '.join(valid)}",
                field=str(order_by),
            )
        return order_by

    @staticmethod
    def validate_order_direction(direction: str) -> str:
        """'asc'/'desc' in any case -> 'ASC'/'DESC'."""
        normalized = direction.lower() if isinstance(direction, str) else ""
        if normalized not in ORDER_DIRECTIONS:
            raise UnsupportedQueryError(
                f"Invalid orderDirection: {direction}. Must be 'asc' or 'desc'"
            )
        return normalized.upper()

    def format_sql(self, sql: str) -> str:
        """Pretty-print for humans (cli, logs). never used for execution.

        falls back to the raw sql if sqlglot can't round-trip it.
        """
        try:
            return sqlglot.transpile(sql, read=self.dialect, write=self.dialect, pretty=True)[0]
        except SqlglotError:
            logger.debug("sqlglot could not format query, showing it raw")
            return sql

    def _table_where(
        self,
        table: str,
        filters: Sequence[FilterCondition],
        previous_filters: Sequence[FilterCondition],
        params: dict[str, Any],
        column_map: ColumnMap,
    ) -> tuple[str, str]:
        physical = self.ctes.physical_table(table)
        current_where = self.conditions.build_for_table(
            filters, params, f"current_{table}", physical, column_map
        )
        previous_where = self.conditions.build_for_table(
            previous_filters, params, f"previous_{table}", physical, column_map
        )
        return current_where, previous_where

    @staticmethod
    def _metric_selects(table: str, table_metrics: Sequence[MetricRequest]) -> list[str]:
        selects = []
        for metric in table_metrics:
            # a LEFT JOIN miss is NULL, same as no sales
            current = f"COALESCE({current_cte(table)}.{metric.alias}, 0)"
            previous = f"COALESCE({previous_cte(table)}.{metric.alias}_ly, 0)"
            selects.extend([
                f"{current} AS {metric.alias}",
                f"{previous} AS {metric.alias}_ly",
                f"{percent_variation(current, previous)} AS {metric.alias}_vs_last_year",
            ])
        return selects

    @staticmethod
    def _coalesce(tables: Sequence[str], column: str, alias: str) -> str:
        args = [f"{name}.{column}" for table in tables for name in (current_cte(table), previous_cte(table))]
        return f"COALESCE({', '.join(args)}) AS {alias}"

    @staticmethod
    def _validate_pagination(limit: int | None, offset: int | None) -> None:
        for name, value in (("limit", limit), ("offset", offset)):
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise UnsupportedQueryError(f"{name} must be a non-negative integer, got {value!r}")

    @staticmethod
    def _assemble(ctes: Sequence[CTE], selects: Sequence[str], body: Sequence[str]) -> str:
        """Join the fragments once, at the very end."""
        parts = []
        if ctes:
            parts.append("WITH\n" + ",\n".join(cte.sql for cte in ctes))
        parts.append("SELECT\n  " + ",\n  ".join(selects))
        parts.extend(line for line in body if line)
        return "\n".join(parts)
