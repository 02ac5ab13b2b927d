"""Query-string style filters -> FilterConditions.

callers (a web layer, the cli) pass filters as a flat mapping of strings:

    {"seller_id": "S001"}                     -> seller_id eq S001
    {"country": "spain,portugal"}             -> country in [spain, portugal]
    {"supplier[neq]": ["VERA", "FORTE"]}      -> supplier neq VERA, supplier neq FORTE

no field validation happens here, the condition builder does that when the
filters are rendered.
"""

import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from typing import Any

from yoyforge.compiler.conditions import DEFAULT_DATE_FIELD
from yoyforge.models.filter import FilterCondition, FilterOperator

# keys that control the request itself rather than filter it
RESERVED_PARAMS = frozenset(
    {"startDate", "endDate", "groupBy", "page", "limit", "orderBy", "orderDirection"}
)

# field[op] or field[op][]
_OPERATOR_KEY = re.compile(r"^(.+)\[(\w+)\](\[\])?$")


def _split_values(value: Any) -> list[str]:
    if isinstance(value, str):
        raw = value.split(",")
    elif isinstance(value, (list, tuple)):
        raw = [v for v in value if isinstance(v, str)]
    else:
        return []
    return [v.strip() for v in raw if v.strip()]


def parse_filter_params(params: Mapping[str, Any]) -> list[FilterCondition]:
    """Turn request parameters into filter conditions.

    reserved keys and empty values are skipped. several values for an eq
    filter become one `in` filter, several values for neq become one neq
    filter each (they're ANDed, so the row must differ from all of them).
    """
    filters: list[FilterCondition] = []

    for key, value in params.items():
        if key in RESERVED_PARAMS or value is None:
            continue

        match = _OPERATOR_KEY.match(key)
        field, operator = (match.group(1), match.group(2)) if match else (key, FilterOperator.EQ.value)

        values = _split_values(value)
        if not values:
            continue

        if operator == FilterOperator.NEQ.value:
            filters.extend(FilterCondition(field=field, operator=operator, value=v) for v in values)
        elif len(values) == 1:
            filters.append(FilterCondition(field=field, operator=operator, value=values[0]))
        else:
            multi = FilterOperator.IN.value if operator == FilterOperator.EQ.value else operator
            filters.append(FilterCondition(field=field, operator=multi, value=values))

    return filters


def date_range_filters(
    start: str | date | None = None,
    end: str | date | None = None,
    date_field: str = DEFAULT_DATE_FIELD,
) -> list[FilterCondition]:
    """gte/lte pair on the date column; either end may be open."""
    filters = []
    if start:
        filters.append(FilterCondition.of(date_field, FilterOperator.GTE, start))
    if end:
        filters.append(FilterCondition.of(date_field, FilterOperator.LTE, end))
    return filters


def combine_filters(
    dynamic_filters: Iterable[FilterCondition], date_filters: Sequence[FilterCondition]
) -> list[FilterCondition]:
    """Date filters first, then everything else."""
    return [*date_filters, *dynamic_filters]
