"""Main ComparisonStore interface for yoyforge."""

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

from yoyforge.compiler.sql_builder import CompiledQuery, ComparisonCompiler
from yoyforge.config import Settings
from yoyforge.discovery import ColumnDiscoveryCache, ColumnMap
from yoyforge.errors import UnsupportedQueryError
from yoyforge.executor.duckdb_executor import DuckDBExecutor
from yoyforge.models.filter import FilterCondition
from yoyforge.models.metric import MetricRequest
from yoyforge.models.query import ListPage
from yoyforge.parser.loader import MetricCatalog
from yoyforge.results import build_comparison_response, build_list_page

logger = logging.getLogger(__name__)

MetricSelection = Iterable[MetricRequest | str] | None

DEFAULT_PAGE_SIZE = 50


class ComparisonStore:
    """Main interface for yoyforge.

    ties the catalog, the column discovery cache, the compiler and the
    executor together. one store per database; safe to reuse across requests.
    """

    def __init__(
        self,
        catalog_path: str | Path,
        database_path: str | None = None,
        *,
        table_prefix: str = "",
        cache_ttl: float = 300.0,
        distinct_max_rows: int = 10_000,
        executor: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the comparison store.

        Args:
            catalog_path: Directory containing metric catalog YAML files.
            database_path: Path to DuckDB file, or None for in-memory.
            table_prefix: Prepended to every physical table name.
            cache_ttl: Seconds a column discovery result stays fresh.
            distinct_max_rows: Ceiling for distinct_values results.
            executor: Anything with execute() and fetch_columns(); defaults
                to a DuckDBExecutor on database_path.
        """
        self.catalog_path = Path(catalog_path)
        self.catalog = MetricCatalog()
        # load and validate upfront - fail fast if the config is broken
        self.catalog.load_directory(self.catalog_path)

        self.compiler = ComparisonCompiler(self.catalog, table_prefix=table_prefix)
        self.executor = executor if executor is not None else DuckDBExecutor(database_path)
        self.columns = ColumnDiscoveryCache(self.executor, ttl=cache_ttl, clock=clock)
        self.distinct_max_rows = distinct_max_rows

    @classmethod
    def from_settings(cls, settings: Settings) -> "ComparisonStore":
        return cls(
            settings.catalog_path,
            settings.database_path,
            table_prefix=settings.table_prefix,
            cache_ttl=settings.column_cache_ttl,
            distinct_max_rows=settings.distinct_max_rows,
        )

    # --- compilation ---

    def _column_map(self, metrics: Sequence[MetricRequest]) -> ColumnMap:
        # one discovery call for exactly the tables this request touches
        return self.columns.columns_for(self.compiler.physical_tables(metrics))

    def compile_comparison(
        self,
        metrics: MetricSelection = None,
        filters: Sequence[FilterCondition] = (),
    ) -> CompiledQuery:
        """Get the single-row comparison query without executing it."""
        resolved = self.catalog.resolve_metrics(metrics)
        return self.compiler.compile_comparison(resolved, list(filters), self._column_map(resolved))

    def compile_grouped(
        self,
        group_by: str,
        metrics: MetricSelection = None,
        filters: Sequence[FilterCondition] = (),
        *,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | None = None,
        order_direction: str = "desc",
    ) -> CompiledQuery:
        """Get the grouped comparison query without executing it."""
        resolved = self.catalog.resolve_metrics(metrics)
        return self.compiler.compile_grouped(
            resolved,
            list(filters),
            group_by,
            self._column_map(resolved),
            limit=limit,
            offset=offset,
            order_by=order_by,
            order_direction=order_direction,
        )

    # --- execution ---

    def compare(
        self,
        metrics: MetricSelection = None,
        filters: Sequence[FilterCondition] = (),
    ) -> dict[str, Any]:
        """Current vs last year for every metric, as one row (or {} if none came back)."""
        compiled = self.compile_comparison(metrics, filters)
        result = self.executor.execute(compiled.sql, compiled.params)
        return result.data[0] if result.data else {}

    def compare_grouped(
        self,
        group_by: str,
        metrics: MetricSelection = None,
        filters: Sequence[FilterCondition] = (),
        *,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | None = None,
        order_direction: str = "desc",
    ) -> list[dict[str, Any]]:
        """One comparison row per dimension value.

        rows are returned as the database produced them, including the
        _total_count column when a limit was given.
        """
        compiled = self.compile_grouped(
            group_by,
            metrics,
            filters,
            limit=limit,
            offset=offset,
            order_by=order_by,
            order_direction=order_direction,
        )
        return self.executor.execute(compiled.sql, compiled.params).data

    def distinct_values(
        self,
        table: str,
        column: str,
        filters: Sequence[FilterCondition] = (),
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[str]:
        """Distinct non-blank values of table.column, sorted A-Z.

        raises ResultLimitExceededError when there are more than
        distinct_max_rows values, paginate instead.
        """
        compiled = self.compiler.compile_distinct(
            table, column, list(filters), limit=limit, offset=offset
        )
        result = self.executor.execute(
            compiled.sql, compiled.params, max_rows=self.distinct_max_rows
        )
        return [row["value"] for row in result.data]

    # --- shaped responses ---

    def balance(
        self,
        metrics: MetricSelection = None,
        filters: Sequence[FilterCondition] = (),
    ) -> dict[str, Any]:
        """compare() with every metric key present and no nulls."""
        resolved = self.catalog.resolve_metrics(metrics)
        row = self.compare(resolved, filters)
        return build_comparison_response(
            row, [m.alias for m in resolved], self.catalog.derived_metric_names()
        )

    def list_page(
        self,
        group_by: str,
        metrics: MetricSelection = None,
        filters: Sequence[FilterCondition] = (),
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        order_by: str | None = None,
        order_direction: str = "desc",
    ) -> ListPage:
        """One page of grouped comparison rows plus pagination metadata."""
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise UnsupportedQueryError(f"page must be a positive integer, got {page!r}")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise UnsupportedQueryError(f"limit must be a positive integer, got {limit!r}")

        resolved = self.catalog.resolve_metrics(metrics)
        rows = self.compare_grouped(
            group_by,
            resolved,
            filters,
            limit=limit,
            offset=(page - 1) * limit,
            order_by=order_by,
            order_direction=order_direction,
        )
        return build_list_page(
            rows,
            group_by,
            page,
            limit,
            [m.alias for m in resolved],
            self.catalog.derived_metric_names(),
        )

    # --- catalog ---

    def list_metrics(self) -> list[dict]:
        """List all base metrics."""
        return [
            {
                "alias": m.alias,
                "table": m.table,
                "expression": m.sql_expr(),
                "description": m.description,
            }
            for m in self.catalog.metrics.values()
        ]

    def list_derived_metrics(self) -> list[dict]:
        """List all derived metrics."""
        return [
            {
                "name": d.name,
                "formula": d.formula,
                "dependencies": list(d.dependencies),
                "description": d.description,
            }
            for d in self.catalog.derived_metrics.values()
        ]

    def list_dimensions(self) -> list[dict]:
        """List the allowed group-by dimensions."""
        return [
            {
                "id": dim.id,
                "name": dim.name or dim.id,
                "description": dim.description,
            }
            for dim in self.catalog.dimensions.values()
        ]

    def validate(self) -> list[str]:
        """Check every metric against the database. Returns list of errors.

        the catalog is already consistent (it validates on load), this finds
        tables and columns the yaml mentions but the database doesn't have.
        """
        errors = []
        metrics = list(self.catalog.metrics.values())
        if not metrics:
            return errors

        column_map = self.columns.columns_for(self.compiler.physical_tables(metrics))
        for metric in metrics:
            physical = self.compiler.ctes.physical_table(metric.table)
            table_columns = column_map.get(physical, frozenset())
            if not table_columns:
                errors.append(f"Metric '{metric.alias}': table '{physical}' not found")
            elif metric.field != "*" and metric.field not in table_columns:
                errors.append(
                    f"Metric '{metric.alias}': column '{metric.field}' not found in '{physical}'"
                )

        for name, dimension in self.catalog.dimensions.items():
            if not any(dimension.id in columns for columns in column_map.values()):
                errors.append(f"Dimension '{name}': no metric table has this column")

        return errors

    def close(self) -> None:
        """Close database connection."""
        self.executor.close()

    def __enter__(self) -> "ComparisonStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
