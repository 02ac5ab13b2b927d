"""Filter conditions -> parameterized WHERE clauses.

every value travels as a named duckdb parameter ($name), never as sql text.
field names are the only user input that lands in the sql string, so they
all get checked against IDENTIFIER_PATTERN before anything is rendered.

the table-aware variant exists because the source tables don't share a
schema - budget has no product columns, held orders have no margin, etc.
a filter on a column a table doesn't have is dropped for that table instead
of blowing up the whole query.
"""

import logging
from collections.abc import Iterable, Mapping, MutableMapping, Sequence
from datetime import date, datetime
from typing import Any

from yoyforge.errors import InvalidFieldError, UnsupportedQueryError
from yoyforge.models.dimension import FilterExclusion
from yoyforge.models.filter import FilterCondition, FilterOperator
from yoyforge.models.metric import is_identifier

logger = logging.getLogger(__name__)

DEFAULT_DATE_FIELD = "date"

# budget rows have a channel column but it is not the sales channel
DEFAULT_EXCLUSIONS = (FilterExclusion(field="channel", table_suffix="budget"),)

# operators that take exactly one parameter
_SINGLE_VALUE_OPERATORS = {
    FilterOperator.EQ: "=",
    FilterOperator.NEQ: "!=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
    FilterOperator.LIKE: "LIKE",
    FilterOperator.ILIKE: "ILIKE",
}


def shift_year(value: Any, years: int) -> Any:
    """Move a date, datetime or ISO string by a number of calendar years.

    feb 29 lands on feb 28 when the target year isn't a leap year. strings
    come back as strings in the same shape they went in.
    """
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return _replace_year(date.fromisoformat(text), years).isoformat()
        parsed = datetime.fromisoformat(text)
        if text[4:5] == "-" and text[7:8] == "-":
            # only the date part moves, keep the time exactly as written
            return _replace_year(parsed.date(), years).isoformat() + text[10:]
        sep = " " if " " in text else "T"
        return _replace_year(parsed, years).isoformat(sep=sep)
    if isinstance(value, date):  # datetime is a date subclass
        return _replace_year(value, years)
    raise TypeError(f"Cannot shift non-date value {value!r}")


def _replace_year(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, day=28)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


class ConditionBuilder:
    """Builds WHERE clauses from FilterConditions.

    stateless apart from configuration - safe to share between requests.
    """

    def __init__(
        self,
        date_field: str = DEFAULT_DATE_FIELD,
        exclusions: Sequence[FilterExclusion] = DEFAULT_EXCLUSIONS,
    ) -> None:
        self.date_field = date_field
        self.exclusions = tuple(exclusions)

    def validate_field_name(self, field: str, table: str | None = None) -> None:
        """Raise InvalidFieldError unless field is a plain identifier."""
        if not isinstance(field, str) or not is_identifier(field):
            raise InvalidFieldError(f"Invalid field name: {field!r}", field=str(field), table=table)

    def build(
        self,
        conditions: Iterable[FilterCondition],
        param_sink: MutableMapping[str, Any],
        param_prefix: str,
    ) -> str:
        """Build a WHERE clause, or "" when there is nothing to filter on."""
        return self.where(self.build_predicates(conditions, param_sink, param_prefix))

    def build_predicates(
        self,
        conditions: Iterable[FilterCondition],
        param_sink: MutableMapping[str, Any],
        param_prefix: str,
    ) -> list[str]:
        """Render each condition to a predicate without the WHERE keyword.

        parameters are collected locally and only merged into param_sink once
        every condition rendered, so a bad condition leaves the sink untouched.
        """
        conditions = list(conditions)
        for condition in conditions:
            self.validate_field_name(condition.field)

        rendered: dict[str, Any] = {}
        predicates = [
            self._render(
                condition,
                self._param_name(param_prefix, condition.field, index),
                _Binder(param_sink, rendered),
            )
            for index, condition in enumerate(conditions)
        ]
        param_sink.update(rendered)
        return predicates

    def build_for_table(
        self,
        conditions: Iterable[FilterCondition],
        param_sink: MutableMapping[str, Any],
        param_prefix: str,
        table_name: str,
        column_map: Mapping[str, Iterable[str]],
    ) -> str:
        """Build a WHERE clause using only conditions table_name can satisfy.

        a table missing from column_map is treated like a table with no
        columns - every condition is dropped.
        """
        conditions = list(conditions)
        for condition in conditions:
            self.validate_field_name(condition.field, table=table_name)

        table_columns = column_map.get(table_name) or frozenset()
        applicable = [
            c
            for c in conditions
            if c.field in table_columns and not self._is_excluded(c.field, table_name)
        ]
        if not applicable:
            return ""
        return self.build(applicable, param_sink, param_prefix)

    def shift_dates(
        self, conditions: Iterable[FilterCondition], year_delta: int
    ) -> list[FilterCondition]:
        """Return new conditions with every date-field value moved by year_delta years."""
        return [
            self._shift_condition(c, year_delta) if c.field == self.date_field else c
            for c in conditions
        ]

    @staticmethod
    def where(predicates: Sequence[str]) -> str:
        if not predicates:
            return ""
        return f"WHERE {' AND '.join(predicates)}"

    def _is_excluded(self, field: str, table_name: str) -> bool:
        return any(exclusion.applies_to(field, table_name) for exclusion in self.exclusions)

    @staticmethod
    def _param_name(prefix: str, field: str, index: int) -> str:
        return f"{prefix}_{field}_{index}" if prefix else f"{field}_{index}"

    def _resolve_operator(self, condition: FilterCondition) -> FilterOperator:
        try:
            return FilterOperator(condition.operator)
        except ValueError:
            # unknown operators have always been treated as equality and some
            # callers depend on it
            logger.warning(
                "Unknown filter operator %r on field %s, falling back to eq",
                condition.operator,
                condition.field,
            )
            return FilterOperator.EQ

    def _render(self, condition: FilterCondition, name: str, params: "_Binder") -> str:
        operator = self._resolve_operator(condition)
        field = condition.field

        if operator in _SINGLE_VALUE_OPERATORS:
            return f"{field} {_SINGLE_VALUE_OPERATORS[operator]} {params.bind(name, condition.value)}"

        if operator in (FilterOperator.IN, FilterOperator.NOT_IN):
            values = _as_list(condition.value)
            if not values:
                raise UnsupportedQueryError(
                    f"Operator '{operator.value}' on {field} needs at least one value",
                    field=field,
                    operator=operator.value,
                )
            slots = [params.bind(f"{name}_{i}", value) for i, value in enumerate(values)]
            keyword = "IN" if operator == FilterOperator.IN else "NOT IN"
            return f"{field} {keyword} ({', '.join(slots)})"

        if operator == FilterOperator.BETWEEN:
            values = _as_list(condition.value)
            if len(values) != 2:
                raise UnsupportedQueryError(
                    f"Operator 'between' on {field} needs exactly two values, got {len(values)}",
                    field=field,
                    operator=operator.value,
                )
            low = params.bind(f"{name}_from", values[0])
            high = params.bind(f"{name}_to", values[1])
            return f"{field} BETWEEN {low} AND {high}"

        if operator == FilterOperator.IS_NULL:
            return f"{field} IS NULL"
        return f"{field} IS NOT NULL"

    def _shift_condition(self, condition: FilterCondition, years: int) -> FilterCondition:
        value = condition.value
        if value is None:
            return condition
        try:
            if isinstance(value, (list, tuple)):
                shifted: Any = type(value)(shift_year(v, years) for v in value)
            else:
                shifted = shift_year(value, years)
        except (TypeError, ValueError) as e:
            raise UnsupportedQueryError(
                f"Cannot shift {condition.field} value {value!r} by {years} year(s): {e}",
                field=condition.field,
                operator=condition.operator,
            ) from e
        return condition.model_copy(update={"value": shifted})


class _Binder:
    """Hands out parameter names for one build() call.

    field names may contain underscores and digits, so a generated name can
    match one an earlier condition (or an earlier build into the same sink)
    already used. such names get a _2, _3... suffix instead of overwriting.
    """

    def __init__(self, taken: Mapping[str, Any], params: dict[str, Any]) -> None:
        self.taken = taken
        self.params = params

    def bind(self, name: str, value: Any) -> str:
        candidate, n = name, 1
        while candidate in self.params or candidate in self.taken:
            n += 1
            candidate = f"{name}_{n}"
        self.params[candidate] = value
        return f"${candidate}"
