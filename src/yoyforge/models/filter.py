"""Filter conditions applied to every comparison query."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class FilterOperator(str, Enum):
    """Operators the condition builder knows how to render."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    LIKE = "like"
    ILIKE = "ilike"


class FilterCondition(BaseModel):
    """A single predicate: field <operator> value.

    operator is kept as a plain string instead of FilterOperator. existing
    callers send operators we don't know and rely on them being treated as
    equality, see ConditionBuilder. frozen so date shifting has to build a
    new condition.
    """

    model_config = ConfigDict(frozen=True)

    field: str
    operator: str = FilterOperator.EQ.value
    value: Any = None

    @classmethod
    def of(cls, field: str, operator: FilterOperator | str, value: Any = None) -> "FilterCondition":
        """Shorthand that accepts the enum or its string value."""
        op = operator.value if isinstance(operator, FilterOperator) else operator
        return cls(field=field, operator=op, value=value)
