"""Integration tests for ComparisonStore."""

from datetime import date
from pathlib import Path

import pytest

from yoyforge.config import Settings
from yoyforge.errors import InvalidFieldError, ResultLimitExceededError, UnsupportedQueryError
from yoyforge.models.filter import FilterCondition
from yoyforge.results import UNASSIGNED
from yoyforge.store import ComparisonStore


def period(start: date, end: date) -> list[FilterCondition]:
    return [
        FilterCondition(field="date", operator="gte", value=start),
        FilterCondition(field="date", operator="lte", value=end),
    ]


class TestComparisonStore:
    def test_create_store(self, metrics_dir: Path, fake_executor):
        """Can create a ComparisonStore."""
        store = ComparisonStore(metrics_dir, executor=fake_executor)
        assert len(store.catalog.metrics) == 5
        store.close()
        assert fake_executor.closed

    def test_from_settings(self, metrics_dir: Path):
        settings = Settings(catalog_path=metrics_dir, table_prefix="dw_", distinct_max_rows=5)
        with ComparisonStore.from_settings(settings) as store:
            assert store.distinct_max_rows == 5
            assert store.compiler.ctes.table_prefix == "dw_"

    def test_list_metrics(self, metrics_dir: Path, fake_executor):
        store = ComparisonStore(metrics_dir, executor=fake_executor)
        metrics = store.list_metrics()

        assert [m["alias"] for m in metrics][:2] == ["sales", "gross_margin"]
        assert metrics[0]["expression"] == "sum(sales_price)"

    def test_list_derived_and_dimensions(self, metrics_dir: Path, fake_executor):
        store = ComparisonStore(metrics_dir, executor=fake_executor)

        derived = {d["name"]: d for d in store.list_derived_metrics()}
        assert derived["budget_achievement_pct"]["dependencies"] == ["sales", "budget"]
        dims = {d["id"]: d for d in store.list_dimensions()}
        assert dims["seller_id"]["name"] == "seller_name"
        assert dims["month"]["name"] == "month"

    def test_one_discovery_query_per_table_set(self, metrics_dir: Path, fake_executor):
        """Requests over the same tables, in any order, share one metadata query."""
        store = ComparisonStore(metrics_dir, executor=fake_executor)
        store.compile_comparison(["sales", "budget"])
        store.compile_comparison(["budget", "sales"])
        store.compile_grouped("seller_id", ["budget", "sales"])

        assert len(fake_executor.calls) == 1

    def test_discovery_uses_physical_names(self, metrics_dir: Path, fake_executor):
        store = ComparisonStore(metrics_dir, executor=fake_executor, table_prefix="dw_")
        store.compile_comparison(["sales", "orders"])
        assert fake_executor.calls == [["dw_transactions", "dw_held_orders"]]

    def test_compare_returns_first_row(self, metrics_dir: Path, fake_executor):
        fake_executor.rows = [{"sales": 1000, "sales_ly": 800, "sales_vs_last_year": 25}]
        store = ComparisonStore(metrics_dir, executor=fake_executor)

        row = store.compare(["sales"], [FilterCondition(field="date", operator="gte", value="2025-01-01")])

        assert row["sales_vs_last_year"] == 25
        sql, params = fake_executor.executed[0]
        assert "sales_vs_last_year" in sql
        assert params == {
            "current_transactions_date_0": "2025-01-01",
            "previous_transactions_date_0": "2024-01-01",
        }

    def test_compare_without_rows(self, metrics_dir: Path, fake_executor):
        store = ComparisonStore(metrics_dir, executor=fake_executor)
        assert store.compare(["sales"]) == {}

    def test_validate_reports_missing_tables_and_columns(self, metrics_dir: Path, fake_executor):
        fake_executor.schemas = {
            "transactions": frozenset({"sales_price", "seller_id", "month"}),
            "held_orders": frozenset({"sales_price"}),
        }
        store = ComparisonStore(metrics_dir, executor=fake_executor)
        errors = store.validate()

        assert "Metric 'gross_margin': column 'gross_margin' not found in 'transactions'" in errors
        assert "Metric 'budget': table 'budget' not found" in errors
        assert "Dimension 'region_id': no metric table has this column" in errors
        assert not any("'sales'" in e for e in errors)

    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (-1, 5)])
    def test_list_page_validates_pagination(self, metrics_dir: Path, fake_executor, page, limit):
        store = ComparisonStore(metrics_dir, executor=fake_executor)
        with pytest.raises(UnsupportedQueryError):
            store.list_page("seller_id", page=page, limit=limit)


class TestComparisonStoreWithData:
    def test_scenario_current_vs_last_year(self, store_with_data: ComparisonStore):
        """January 2025 vs January 2024: 1000 vs 800 is +25%."""
        row = store_with_data.compare(["sales"], period(date(2025, 1, 1), date(2025, 1, 31)))

        assert set(row) >= {"sales", "sales_ly", "sales_vs_last_year"}
        assert row["sales"] == 1000.0
        assert row["sales_ly"] == 800.0
        assert row["sales_vs_last_year"] == pytest.approx(25.0)

    def test_no_last_year_data_means_zero_variation(self, store_with_data: ComparisonStore):
        """March 2024 has no sales - the delta is 0, not an error or null."""
        row = store_with_data.compare(["sales"], period(date(2025, 3, 1), date(2025, 3, 31)))

        assert row["sales"] == 999.0
        assert row["sales_ly"] == 0
        assert row["sales_vs_last_year"] == 0

    def test_empty_current_period_is_minus_100(self, store_with_data: ComparisonStore):
        """No sales this January against 1000 last January is a -100% change."""
        row = store_with_data.compare(
            ["sales", "gross_margin"], period(date(2026, 1, 1), date(2026, 1, 31))
        )

        assert row["sales"] == 0
        assert row["sales_ly"] == 1000.0
        assert row["sales_vs_last_year"] == pytest.approx(-100.0)
        assert row["gross_margin_vs_last_year"] == pytest.approx(-100.0)
        assert row["gross_margin_pct"] == 0
        assert row["sales_growth"] == pytest.approx(-1000.0)

    def test_all_tables_and_derived_metrics(self, store_with_data: ComparisonStore):
        row = store_with_data.compare(filters=period(date(2025, 1, 1), date(2025, 1, 31)))

        assert row["budget"] == 1200.0
        assert row["budget_ly"] == 700.0
        assert row["orders_vs_last_year"] == pytest.approx(100.0)
        assert row["gross_margin_pct"] == pytest.approx(25.0)
        assert row["budget_achievement_pct"] == pytest.approx(1000 / 1200 * 100)
        assert row["order_fulfillment_pct"] == pytest.approx(20.0)
        assert row["sales_growth"] == pytest.approx(200.0)
        assert row["margin_over_target"] == pytest.approx(-5.0)

    def test_channel_filter_skips_budget(self, store_with_data: ComparisonStore):
        filters = [*period(date(2025, 1, 1), date(2025, 1, 31)), FilterCondition(field="channel", value="web")]
        row = store_with_data.compare(["sales", "budget", "orders"], filters)

        assert row["sales"] == 600.0
        assert row["sales_ly"] == 500.0
        assert row["budget"] == 1200.0  # not filtered
        assert row["orders"] == 200.0

    def test_grouped_by_seller(self, store_with_data: ComparisonStore):
        rows = store_with_data.compare_grouped(
            "seller_id", ["sales", "budget", "orders"], period(date(2025, 1, 1), date(2025, 1, 31))
        )

        assert [r["id"] for r in rows] == ["S1", "S2"]
        assert rows[0]["name"] == "Ana"
        assert rows[0]["sales_vs_last_year"] == pytest.approx(20.0)
        assert rows[0]["budget"] == 800.0
        assert rows[0]["orders"] == 200.0
        # no budget last year and no held orders for S2: the LEFT JOIN misses read as 0
        assert rows[1]["budget_ly"] == 0
        assert rows[1]["orders"] == 0
        assert rows[1]["orders_vs_last_year"] == 0

    def test_grouped_skips_table_without_dimension(self, store_with_data: ComparisonStore):
        """Held orders have no region: zeros in every row."""
        rows = store_with_data.compare_grouped(
            "region_id",
            ["sales", "orders"],
            period(date(2025, 1, 1), date(2025, 1, 31)),
            limit=50,
            offset=0,
        )

        assert [(r["id"], r["name"]) for r in rows] == [("R1", "North"), ("R2", "South")]
        assert all(r["orders"] == 0 and r["orders_ly"] == 0 for r in rows)
        assert all(r["order_fulfillment_pct"] == 0 for r in rows)
        assert all(r["_total_count"] == 2 for r in rows)

    def test_grouped_order_ascending(self, store_with_data: ComparisonStore):
        rows = store_with_data.compare_grouped(
            "seller_id",
            ["sales"],
            period(date(2025, 1, 1), date(2025, 1, 31)),
            order_by="sales",
            order_direction="asc",
        )
        assert [r["id"] for r in rows] == ["S2", "S1"]

    def test_grouped_invalid_dimension(self, store_with_data: ComparisonStore):
        with pytest.raises(InvalidFieldError):
            store_with_data.compare_grouped("channel", ["sales"])

    def test_list_page(self, store_with_data: ComparisonStore):
        page = store_with_data.list_page(
            "seller_id",
            ["sales", "budget"],
            period(date(2025, 1, 1), date(2025, 1, 31)),
            page=2,
            limit=1,
        )

        assert page.meta.total == 2
        assert page.meta.total_pages == 2
        assert page.meta.count == 1
        item = page.data[0]
        assert item["id"] == "S2"
        assert item["budget_last_year"] == 0
        assert "_total_count" not in item
        assert "gross_margin_pct" in item

    def test_list_page_blank_dimension(self, store_with_data: ComparisonStore, db_with_data):
        db_with_data.execute(
            "INSERT INTO transactions VALUES ('2025-01-11', 1, '', '', 'R1', 'North', 'web', 50.0, 5.0)"
        )
        page = store_with_data.list_page(
            "seller_id", ["sales"], period(date(2025, 1, 1), date(2025, 1, 31))
        )
        assert UNASSIGNED in [item["id"] for item in page.data]

    def test_balance(self, store_with_data: ComparisonStore):
        response = store_with_data.balance(["sales"], period(date(2025, 1, 1), date(2025, 1, 31)))

        assert response["sales_last_year"] == 800.0
        assert "sales_ly" not in response
        # derived metrics whose inputs weren't requested are reported as 0
        assert response["budget_achievement_pct"] == 0

    def test_distinct_values(self, store_with_data: ComparisonStore):
        assert store_with_data.distinct_values("transactions", "channel") == ["store", "web"]
        assert store_with_data.distinct_values(
            "transactions", "seller_name", [FilterCondition(field="seller_id", value="S2")]
        ) == ["Luis"]

    def test_distinct_values_pagination(self, store_with_data: ComparisonStore):
        assert store_with_data.distinct_values("transactions", "seller_id", limit=1, offset=1) == ["S2"]

    def test_distinct_values_ceiling(self, metrics_dir: Path, db_with_data):
        store = ComparisonStore(metrics_dir, executor=db_with_data, distinct_max_rows=1)
        with pytest.raises(ResultLimitExceededError):
            store.distinct_values("transactions", "channel")

    def test_validate_success(self, store_with_data: ComparisonStore):
        assert store_with_data.validate() == []
