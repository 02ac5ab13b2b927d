"""Pydantic models for metric requests and derived metric definitions.

a metric request is the smallest unit the engine understands: "aggregate this
column of this table and call it X". everything else (last year values, deltas,
derived ratios) is generated from a list of these.
"""

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# letters/digits/underscore, can't start with a digit. every identifier that
# ends up in generated sql goes through this
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(value: str) -> bool:
    """True if value is safe to embed in sql as a bare identifier."""
    return bool(IDENTIFIER_PATTERN.match(value))


class AggregationType(str, Enum):
    """Supported aggregation functions.

    kept to the five that behave the same on every columnar store we care about.
    """

    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MIN = "min"
    MAX = "max"


class MetricRequest(BaseModel):
    """Compute aggregation(field) from table and expose it as alias."""

    model_config = ConfigDict(frozen=True)

    table: str
    field: str
    aggregation: AggregationType
    alias: str
    description: str | None = None

    @field_validator("table", "alias")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not is_identifier(value):
            raise ValueError(f"Invalid identifier: {value!r}")
        return value

    @model_validator(mode="after")
    def _check_field(self) -> "MetricRequest":
        # count(*) is the only non-column argument we accept
        if self.field == "*" and self.aggregation == AggregationType.COUNT:
            return self
        if not is_identifier(self.field):
            raise ValueError(f"Invalid field for metric '{self.alias}': {self.field!r}")
        return self

    def sql_expr(self) -> str:
        """Render the aggregate, e.g. sum(sales_price)."""
        return f"{self.aggregation.value}({self.field})"


class DerivedMetric(BaseModel):
    """A metric computed from other metrics after aggregation.

    formula uses {name} placeholders; every placeholder must be listed in
    dependencies. dependencies can be base aliases, alias_last_year, or the
    name of another derived metric.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    formula: str
    dependencies: list[str] = Field(min_length=1)
    description: str = ""

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not is_identifier(value):
            raise ValueError(f"Invalid derived metric name: {value!r}")
        return value
