"""Pydantic models for yoyforge."""

from yoyforge.models.dimension import Dimension, DimensionFieldPair, FilterExclusion
from yoyforge.models.filter import FilterCondition, FilterOperator
from yoyforge.models.metric import (
    IDENTIFIER_PATTERN,
    AggregationType,
    DerivedMetric,
    MetricRequest,
    is_identifier,
)
from yoyforge.models.query import ListMeta, ListPage, QueryResult

__all__ = [
    "IDENTIFIER_PATTERN",
    "AggregationType",
    "DerivedMetric",
    "Dimension",
    "DimensionFieldPair",
    "FilterCondition",
    "FilterExclusion",
    "FilterOperator",
    "ListMeta",
    "ListPage",
    "MetricRequest",
    "QueryResult",
    "is_identifier",
]
