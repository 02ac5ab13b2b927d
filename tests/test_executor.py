"""Tests for DuckDB executor."""

from pathlib import Path

import duckdb
import pytest

from yoyforge.errors import ResultLimitExceededError
from yoyforge.executor.duckdb_executor import DuckDBExecutor


class TestDuckDBExecutor:
    def test_create_in_memory(self):
        """Can create in-memory executor."""
        executor = DuckDBExecutor()
        assert executor.database_path is None
        result = executor.execute("SELECT 1 AS value")
        assert result.data[0]["value"] == 1
        executor.close()

    def test_create_with_file(self, tmp_path: Path):
        """Can create file-based executor."""
        db_path = str(tmp_path / "test.duckdb")
        executor = DuckDBExecutor(db_path)
        executor.create_table_from_data("test", {"id": "INTEGER"}, [(1,), (2,)])
        executor.close()

        # reopen read-only and verify
        executor2 = DuckDBExecutor(db_path, read_only=True)
        assert executor2.execute("SELECT count(*) AS n FROM test").data[0]["n"] == 2
        executor2.close()

    def test_execute_returns_query_result(self):
        """Execute returns QueryResult with correct fields."""
        executor = DuckDBExecutor()
        result = executor.execute("SELECT 1 AS a, 'hello' AS b")

        assert result.columns == ["a", "b"]
        assert result.data == [{"a": 1, "b": "hello"}]
        assert result.row_count == 1
        assert result.execution_time_ms >= 0
        assert "SELECT" in result.sql
        executor.close()

    def test_named_parameters(self):
        """Values travel as $name parameters."""
        with DuckDBExecutor() as executor:
            result = executor.execute("SELECT $a AS a, $c AS label", {"a": 1, "c": "x'y"})
            assert result.data == [{"a": 1, "label": "x'y"}]
            assert result.params == {"a": 1, "c": "x'y"}

    def test_statement_without_result_set(self):
        with DuckDBExecutor() as executor:
            executor.execute("CREATE TABLE t (id INTEGER)")
            assert executor.fetch_columns(["t"]) == {"t": {"id"}}

    def test_max_rows(self):
        with DuckDBExecutor() as executor:
            result = executor.execute("SELECT * FROM range(3)", max_rows=3)
            assert result.row_count == 3

            with pytest.raises(ResultLimitExceededError) as exc:
                executor.execute("SELECT * FROM range(4)", max_rows=3)
            assert exc.value.max_rows == 3

    def test_errors_propagate(self):
        with DuckDBExecutor() as executor:
            with pytest.raises(duckdb.Error):
                executor.execute("SELECT * FROM missing_table")

    def test_create_table_rejects_bad_identifiers(self):
        with DuckDBExecutor() as executor:
            with pytest.raises(ValueError):
                executor.create_table_from_data("t; DROP", {"id": "INTEGER"}, [])
            with pytest.raises(ValueError):
                executor.create_table_from_data("t", {"id id": "INTEGER"}, [])

    def test_context_manager(self):
        """Executor can be used as context manager."""
        with DuckDBExecutor() as executor:
            result = executor.execute("SELECT 1 AS value")
            assert result.data[0]["value"] == 1
        assert executor._conn is None


class TestFetchColumns:
    def test_columns_by_table(self, db_with_data: DuckDBExecutor):
        columns = db_with_data.fetch_columns(["budget", "held_orders"])

        assert set(columns) == {"budget", "held_orders"}
        assert "cost_price" in columns["budget"]
        assert "region_id" not in columns["held_orders"]

    def test_unknown_tables_absent(self, db_with_data: DuckDBExecutor):
        assert db_with_data.fetch_columns(["ghost"]) == {}

    def test_empty_input(self, db_with_data: DuckDBExecutor):
        assert db_with_data.fetch_columns([]) == {}


class TestDuckDBExecutorWithData:
    def test_execute_aggregation(self, db_with_data: DuckDBExecutor):
        """Can execute aggregation queries."""
        result = db_with_data.execute("SELECT COUNT(*) as count FROM transactions")
        assert result.data[0]["count"] == 5

    def test_execute_with_filter(self, db_with_data: DuckDBExecutor):
        result = db_with_data.execute(
            "SELECT sum(sales_price) AS total FROM transactions WHERE seller_id = $seller",
            {"seller": "S1"},
        )
        assert result.data[0]["total"] == 2099.0
