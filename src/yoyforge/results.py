"""Shape raw comparison rows into the responses callers expect.

the sql speaks in alias / alias_ly / alias_vs_last_year; the outside world
gets alias / alias_last_year / alias_vs_last_year with zeros instead of
nulls, and the same keys on every row whether or not the data had them.
"""

import math
from collections.abc import Mapping, Sequence
from typing import Any

from yoyforge.compiler.derived import LAST_YEAR_SUFFIX
from yoyforge.compiler.sql_builder import TOTAL_COUNT_COLUMN
from yoyforge.models.query import ListMeta, ListPage

# shown instead of a blank dimension id or name
UNASSIGNED = "Unassigned"


def _value(row: Mapping[str, Any], key: str) -> Any:
    value = row.get(key)
    return 0 if value is None else value


def build_comparison_response(
    row: Mapping[str, Any],
    aliases: Sequence[str],
    derived_names: Sequence[str] = (),
) -> dict[str, Any]:
    """Every configured metric, its last-year value and delta, plus derived metrics."""
    response: dict[str, Any] = {}
    for alias in aliases:
        response[alias] = _value(row, alias)
        response[f"{alias}{LAST_YEAR_SUFFIX}"] = _value(row, f"{alias}_ly")
        response[f"{alias}_vs_last_year"] = _value(row, f"{alias}_vs_last_year")
    for name in derived_names:
        response[name] = _value(row, name)
    return response


def _label(value: Any) -> str:
    text = "" if value is None else str(value)
    return UNASSIGNED if not text.strip() else text


def build_list_page(
    rows: Sequence[Mapping[str, Any]],
    group_by: str,
    page: int,
    limit: int,
    aliases: Sequence[str],
    derived_names: Sequence[str] = (),
) -> ListPage:
    """Paginated grouped response.

    the total comes from the window count the grouped query adds to every
    row; without it (or without rows) the page length is all we know.
    """
    if rows and TOTAL_COUNT_COLUMN in rows[0]:
        total = int(rows[0][TOTAL_COUNT_COLUMN])
    else:
        total = len(rows)

    items = []
    for row in rows:
        item = {"id": _label(row.get("id")), "name": _label(row.get("name"))}
        item.update(build_comparison_response(row, aliases, derived_names))
        items.append(item)

    return ListPage(
        data=items,
        meta=ListMeta(
            group_by=group_by,
            total=total,
            count=len(items),
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if limit else 0,
        ),
    )
