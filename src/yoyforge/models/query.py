"""Pydantic models for query results and shaped responses.

QueryResult is what the executor hands back. ListPage is the paginated shape
the grouped endpoint callers expect, built by yoyforge.results.
"""

from typing import Any

from pydantic import BaseModel, Field


class QueryResult(BaseModel):
    """Result of executing one statement.

    keeping the sql and its parameters next to the data makes it easy to
    replay a query by hand when a number looks off.
    """

    sql: str
    params: dict[str, Any] = Field(default_factory=dict)
    columns: list[str]
    data: list[dict[str, Any]]
    row_count: int
    execution_time_ms: float


class ListMeta(BaseModel):
    """Pagination metadata for a grouped comparison."""

    group_by: str
    total: int
    count: int
    page: int
    limit: int
    total_pages: int


class ListPage(BaseModel):
    """One page of grouped comparison rows."""

    data: list[dict[str, Any]]
    meta: ListMeta
