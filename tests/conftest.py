"""Pytest fixtures for yoyforge tests."""

from collections.abc import Generator, Mapping, Sequence
from datetime import date
from pathlib import Path
from typing import Any

import pytest

from yoyforge.compiler.sql_builder import ComparisonCompiler
from yoyforge.executor.duckdb_executor import DuckDBExecutor
from yoyforge.models.filter import FilterCondition
from yoyforge.models.query import QueryResult
from yoyforge.parser.loader import MetricCatalog
from yoyforge.store import ComparisonStore


@pytest.fixture
def sample_catalog_yaml() -> str:
    """Sample metric catalog YAML content for testing."""
    return """
primary_table: transactions
date_field: date

metrics:
  - table: transactions
    field: sales_price
    aggregation: sum
    alias: sales
    description: "Invoiced sales"

  - table: transactions
    field: gross_margin
    aggregation: sum
    alias: gross_margin

  - table: budget
    field: sales_price
    aggregation: sum
    alias: budget

  - table: budget
    field: cost_price
    aggregation: sum
    alias: budget_cost

  - table: held_orders
    field: sales_price
    aggregation: sum
    alias: orders

derived_metrics:
  - name: gross_margin_pct
    description: "Gross margin percentage"
    dependencies: [gross_margin, sales]
    formula: "CASE WHEN {sales} != 0 THEN ({gross_margin} / {sales}) * 100 ELSE 0 END"

  - name: budget_achievement_pct
    description: "Budget achievement %"
    dependencies: [sales, budget]
    formula: "CASE WHEN {budget} != 0 THEN ({sales} / {budget}) * 100 ELSE 0 END"

  - name: order_fulfillment_pct
    dependencies: [sales, orders]
    formula: "CASE WHEN {sales} != 0 THEN ({orders} / {sales}) * 100 ELSE 0 END"

  - name: sales_growth
    dependencies: [sales, sales_last_year]
    formula: "{sales} - {sales_last_year}"

  - name: margin_over_target
    dependencies: [gross_margin_pct]
    formula: "{gross_margin_pct} - 30"

dimensions:
  - id: seller_id
    name: seller_name
  - id: region_id
    name: region_name
  - id: month

filter_exclusions:
  - field: channel
    table_suffix: budget
"""


@pytest.fixture
def metrics_dir(tmp_path: Path, sample_catalog_yaml: str) -> Path:
    """Create a temporary metrics directory with sample YAML."""
    metrics_path = tmp_path / "metrics"
    metrics_path.mkdir()
    (metrics_path / "sales.yaml").write_text(sample_catalog_yaml)
    return metrics_path


@pytest.fixture
def catalog(metrics_dir: Path) -> MetricCatalog:
    """Create a loaded MetricCatalog."""
    cat = MetricCatalog()
    cat.load_directory(metrics_dir)
    return cat


@pytest.fixture
def compiler(catalog: MetricCatalog) -> ComparisonCompiler:
    return ComparisonCompiler(catalog)


@pytest.fixture
def column_map() -> dict[str, frozenset[str]]:
    """Canned schemas: budget has no names or customers, held orders have no region."""
    return {
        "transactions": frozenset(
            {"date", "month", "seller_id", "seller_name", "region_id", "region_name",
             "channel", "sales_price", "gross_margin"}
        ),
        "budget": frozenset(
            {"date", "month", "seller_id", "region_id", "channel", "sales_price", "cost_price"}
        ),
        "held_orders": frozenset({"date", "month", "seller_id", "channel", "sales_price"}),
    }


@pytest.fixture
def january_2025() -> list[FilterCondition]:
    return [
        FilterCondition(field="date", operator="gte", value=date(2025, 1, 1)),
        FilterCondition(field="date", operator="lte", value=date(2025, 1, 31)),
    ]


class FakeColumnSource:
    """ColumnSource double that counts metadata queries."""

    def __init__(self, schemas: Mapping[str, frozenset[str]]) -> None:
        self.schemas = schemas
        self.calls: list[list[str]] = []

    def fetch_columns(self, table_names: Sequence[str]) -> dict[str, set[str]]:
        self.calls.append(list(table_names))
        return {t: set(self.schemas[t]) for t in table_names if t in self.schemas}


class FakeExecutor(FakeColumnSource):
    """Executor double returning canned rows and remembering what it ran."""

    def __init__(self, schemas: Mapping[str, frozenset[str]], rows: list[dict[str, Any]] | None = None) -> None:
        super().__init__(schemas)
        self.rows = rows or []
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    def execute(self, sql: str, params: Mapping[str, Any] | None = None, max_rows: int | None = None) -> QueryResult:
        self.executed.append((sql, dict(params or {})))
        columns = list(self.rows[0]) if self.rows else []
        return QueryResult(
            sql=sql,
            params=dict(params or {}),
            columns=columns,
            data=self.rows,
            row_count=len(self.rows),
            execution_time_ms=0.0,
        )

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_source(column_map: dict[str, frozenset[str]]) -> FakeColumnSource:
    return FakeColumnSource(column_map)


@pytest.fixture
def fake_executor(column_map: dict[str, frozenset[str]]) -> FakeExecutor:
    return FakeExecutor(column_map)


@pytest.fixture
def sample_sales_data() -> dict[str, tuple[dict[str, str], list[tuple]]]:
    """Two januaries of sales, budget and held orders.

    january 2025 vs january 2024:
      sales 1000 vs 800, gross margin 250 vs 160
      budget 1200 vs 700, held orders 200 vs 100
    plus one march 2025 sale outside the january window.
    """
    transactions = (
        {
            "date": "DATE",
            "month": "INTEGER",
            "seller_id": "VARCHAR",
            "seller_name": "VARCHAR",
            "region_id": "VARCHAR",
            "region_name": "VARCHAR",
            "channel": "VARCHAR",
            "sales_price": "DOUBLE",
            "gross_margin": "DOUBLE",
        },
        [
            (date(2025, 1, 10), 1, "S1", "Ana", "R1", "North", "web", 600.0, 150.0),
            (date(2025, 1, 20), 1, "S2", "Luis", "R2", "South", "store", 400.0, 100.0),
            (date(2024, 1, 15), 1, "S1", "Ana", "R1", "North", "web", 500.0, 100.0),
            (date(2024, 1, 25), 1, "S2", "Luis", "R2", "South", "store", 300.0, 60.0),
            (date(2025, 3, 1), 3, "S1", "Ana", "R1", "North", "web", 999.0, 0.0),
        ],
    )
    budget = (
        {
            "date": "DATE",
            "month": "INTEGER",
            "seller_id": "VARCHAR",
            "region_id": "VARCHAR",
            "channel": "VARCHAR",
            "sales_price": "DOUBLE",
            "cost_price": "DOUBLE",
        },
        [
            (date(2025, 1, 1), 1, "S1", "R1", "plan", 800.0, 560.0),
            (date(2025, 1, 1), 1, "S2", "R2", "plan", 400.0, 280.0),
            (date(2024, 1, 1), 1, "S1", "R1", "plan", 700.0, 490.0),
        ],
    )
    held_orders = (
        {
            "date": "DATE",
            "month": "INTEGER",
            "seller_id": "VARCHAR",
            "channel": "VARCHAR",
            "sales_price": "DOUBLE",
        },
        [
            (date(2025, 1, 5), 1, "S1", "web", 200.0),
            (date(2024, 1, 5), 1, "S1", "web", 100.0),
        ],
    )
    return {"transactions": transactions, "budget": budget, "held_orders": held_orders}


@pytest.fixture
def db_with_data(sample_sales_data) -> Generator[DuckDBExecutor, None, None]:
    """Create a DuckDB executor with sample data."""
    executor = DuckDBExecutor()
    for table, (columns, rows) in sample_sales_data.items():
        executor.create_table_from_data(table, columns, rows)

    yield executor
    executor.close()


@pytest.fixture
def store_with_data(metrics_dir: Path, db_with_data: DuckDBExecutor) -> Generator[ComparisonStore, None, None]:
    """Create a ComparisonStore over the sample data."""
    store = ComparisonStore(metrics_dir, executor=db_with_data)
    yield store
    store.close()
