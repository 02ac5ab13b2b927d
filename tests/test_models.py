"""Tests for Pydantic models."""

import pytest
from pydantic import ValidationError

from yoyforge.models import (
    AggregationType,
    DerivedMetric,
    Dimension,
    DimensionFieldPair,
    FilterCondition,
    FilterExclusion,
    FilterOperator,
    ListMeta,
    ListPage,
    MetricRequest,
    QueryResult,
    is_identifier,
)


class TestMetricRequest:
    def test_create(self):
        metric = MetricRequest(table="transactions", field="sales_price", aggregation="sum", alias="sales")
        assert metric.aggregation == AggregationType.SUM
        assert metric.sql_expr() == "sum(sales_price)"

    def test_count_star(self):
        metric = MetricRequest(table="t", field="*", aggregation="count", alias="rows")
        assert metric.sql_expr() == "count(*)"

    def test_star_only_for_count(self):
        with pytest.raises(ValidationError):
            MetricRequest(table="t", field="*", aggregation="sum", alias="x")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"table": "t t"},
            {"alias": "1x"},
            {"field": "price * 2"},
            {"aggregation": "median"},
        ],
    )
    def test_invalid(self, kwargs):
        base = {"table": "t", "field": "x", "aggregation": "sum", "alias": "x"}
        with pytest.raises(ValidationError):
            MetricRequest(**{**base, **kwargs})

    def test_frozen(self):
        metric = MetricRequest(table="t", field="x", aggregation="sum", alias="x")
        with pytest.raises(ValidationError):
            metric.alias = "y"


class TestDerivedMetric:
    def test_create(self):
        derived = DerivedMetric(name="ratio", formula="{a} / {b}", dependencies=["a", "b"])
        assert derived.description == ""

    def test_needs_dependencies(self):
        with pytest.raises(ValidationError):
            DerivedMetric(name="const", formula="1", dependencies=[])

    def test_name_must_be_identifier(self):
        with pytest.raises(ValidationError):
            DerivedMetric(name="my ratio", formula="{a}", dependencies=["a"])


class TestFilterCondition:
    def test_defaults_to_eq(self):
        assert FilterCondition(field="a", value=1).operator == "eq"

    def test_of_accepts_enum(self):
        assert FilterCondition.of("a", FilterOperator.NOT_IN, [1]).operator == "not_in"

    def test_unknown_operator_kept(self):
        """The builder decides what to do with operators it doesn't know."""
        assert FilterCondition(field="a", operator="contains", value=1).operator == "contains"

    def test_frozen(self):
        condition = FilterCondition(field="a", value=1)
        with pytest.raises(ValidationError):
            condition.value = 2


class TestDimensions:
    def test_field_pair(self):
        assert Dimension(id="customer_id", name="customer_name").field_pair() == DimensionFieldPair(
            id_field="customer_id", name_field="customer_name"
        )

    def test_single_column(self):
        pair = Dimension(id="month").field_pair()
        assert pair.name_field == "month"
        assert not pair.has_name_field

    def test_invalid_column(self):
        with pytest.raises(ValidationError):
            Dimension(id="month; --")

    def test_exclusion_applies_to(self):
        exclusion = FilterExclusion(field="channel", table_suffix="budget")
        assert exclusion.applies_to("channel", "budget")
        assert exclusion.applies_to("channel", "dw_budget")
        assert not exclusion.applies_to("channel", "budget_2024")
        assert not exclusion.applies_to("seller_id", "budget")


class TestQueryModels:
    def test_query_result(self):
        result = QueryResult(
            sql="SELECT 1", columns=["a"], data=[{"a": 1}], row_count=1, execution_time_ms=0.5
        )
        assert result.params == {}

    def test_list_page(self):
        page = ListPage(
            data=[],
            meta=ListMeta(group_by="month", total=0, count=0, page=1, limit=50, total_pages=0),
        )
        assert page.model_dump()["meta"]["group_by"] == "month"


@pytest.mark.parametrize(
    "value,expected",
    [("sales", True), ("_x1", True), ("IdRegional", True), ("1x", False), ("a-b", False), ("", False)],
)
def test_is_identifier(value, expected):
    assert is_identifier(value) is expected
