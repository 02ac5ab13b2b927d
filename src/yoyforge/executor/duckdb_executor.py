"""DuckDB query executor for yoyforge.

duckdb is the columnar store here - embedded, fast at aggregations, and it
takes named parameters ($name) which is all the compiler emits. the in-memory
mode is great for testing and one-off analysis.

besides running statements this is also the ColumnSource the discovery cache
uses: one information_schema query for a whole batch of tables.
"""

import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

import duckdb

from yoyforge.errors import ResultLimitExceededError
from yoyforge.models.metric import is_identifier
from yoyforge.models.query import QueryResult

logger = logging.getLogger(__name__)


class DuckDBExecutor:
    """Execute queries against DuckDB.

    thin wrapper that handles connection management and result formatting.
    each statement runs on its own cursor so concurrent requests never share
    one - duckdb connections aren't safe to use from several threads at once.
    """

    def __init__(self, database_path: str | None = None, read_only: bool = False) -> None:
        """Initialize DuckDB connection settings.

        Args:
            database_path: Path to DuckDB file, or None for in-memory.
            read_only: Open the database file read-only.
        """
        self.database_path = database_path
        self.read_only = read_only
        self._conn: duckdb.DuckDBPyConnection | None = None  # lazy init

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection."""
        if self._conn is None:
            self._conn = duckdb.connect(
                self.database_path or ":memory:",
                read_only=self.read_only and self.database_path is not None,
            )
        return self._conn

    def execute(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        max_rows: int | None = None,
    ) -> QueryResult:
        """Execute one statement and return structured results.

        with max_rows set, fetching stops one row past the cap and raises
        instead of silently truncating.
        """
        params = dict(params or {})
        start = time.perf_counter()

        cursor = self.conn.cursor()
        try:
            result = cursor.execute(sql, params or None)
            # ddl statements have no result set
            columns = [desc[0] for desc in result.description or []]
            if not columns:
                rows = []
            elif max_rows is None:
                rows = result.fetchall()
            else:
                rows = result.fetchmany(max_rows + 1)
                if len(rows) > max_rows:
                    raise ResultLimitExceededError(max_rows)
        finally:
            cursor.close()

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug("Query returned %d rows in %.2fms", len(rows), elapsed_ms)

        data = [dict(zip(columns, row)) for row in rows]
        return QueryResult(
            sql=sql,
            params=params,
            columns=columns,
            data=data,
            row_count=len(data),
            execution_time_ms=round(elapsed_ms, 2),
        )

    def fetch_columns(self, table_names: Sequence[str]) -> dict[str, set[str]]:
        """Columns of each table in the current schema, in one round-trip.

        tables that don't exist simply don't show up in the result.
        """
        if not table_names:
            return {}
        placeholders = ", ".join(f"$table_{i}" for i in range(len(table_names)))
        params = {f"table_{i}": name for i, name in enumerate(table_names)}

        result = self.execute(
            f"""
            SELECT table_name, column_name
            FROM information_schema.columns
            WHERE table_schema = current_schema()
              AND table_name IN ({placeholders})
            ORDER BY table_name, column_name
            """,
            params,
        )

        columns: dict[str, set[str]] = {}
        for row in result.data:
            columns.setdefault(row["table_name"], set()).add(row["column_name"])
        return columns

    def create_table_from_data(
        self,
        table_name: str,
        columns: Mapping[str, str],
        data: Sequence[tuple[Any, ...]],
    ) -> None:
        """Create (or replace) a table from in-memory rows.

        columns maps column name -> duckdb type. handy for tests and the
        sample data generator; real data should arrive through your loaders.
        """
        for name in (table_name, *columns):
            if not is_identifier(name):
                raise ValueError(f"Invalid identifier: {name!r}")

        col_defs = ", ".join(f"{name} {col_type}" for name, col_type in columns.items())
        self.conn.execute(f"CREATE OR REPLACE TABLE {table_name} ({col_defs})")

        if data:
            placeholders = ", ".join(["?"] * len(columns))
            self.conn.executemany(f"INSERT INTO {table_name} VALUES ({placeholders})", data)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DuckDBExecutor":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
