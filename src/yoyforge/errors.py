"""Exceptions raised while building or running comparison queries.

the builders raise these before any sql leaves the process, so callers can
turn them into client-facing messages. everything subclasses ValueError like
the rest of the codebase, except the result-size guard which is a runtime
condition of the store rather than a bad request.
"""


class QueryBuildError(ValueError):
    """Base class for errors raised while synthesizing a query.

    carries the offending field/table/operator so the caller can format its
    own message without parsing ours.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        table: str | None = None,
        operator: str | None = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.table = table
        self.operator = operator


class InvalidFieldError(QueryBuildError):
    """A filter, group-by, order-by or identifier failed validation."""


class UnsupportedQueryError(QueryBuildError):
    """The request has a shape we can't turn into sql (bad between, etc)."""


class ResultLimitExceededError(RuntimeError):
    """A capped query returned more rows than allowed."""

    def __init__(self, max_rows: int) -> None:
        super().__init__(f"Query returned more than {max_rows} rows")
        self.max_rows = max_rows
