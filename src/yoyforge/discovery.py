"""Column discovery with a short-lived cache.

the query builder needs to know which columns each source table actually has
before it references one (filters, group-by dimensions). schemas change
rarely, so the answer is cached per table set for a few minutes.

concurrent misses for the same key can both hit the store - they compute the
same map so the second write is harmless. stored maps are never mutated,
a refresh replaces the whole entry.
"""

import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

ColumnMap = Mapping[str, frozenset[str]]

DEFAULT_TTL_SECONDS = 300.0


class ColumnSource(Protocol):
    """Anything that can list the columns of a batch of tables in one round-trip."""

    def fetch_columns(self, table_names: Sequence[str]) -> Mapping[str, Iterable[str]]: ...


@dataclass(frozen=True)
class _CacheEntry:
    data: ColumnMap
    stored_at: float


class ColumnDiscoveryCache:
    """TTL cache in front of a ColumnSource.

    owned by the store rather than being a module-level singleton, so tests
    and multiple configurations in one process don't share state.
    """

    def __init__(
        self,
        source: ColumnSource,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    @staticmethod
    def cache_key(table_names: Iterable[str]) -> str:
        return ",".join(sorted(table_names))

    def columns_for(self, table_names: Sequence[str]) -> ColumnMap:
        """Return table -> columns for every requested table.

        tables the store doesn't know come back with an empty set, so callers
        never need to tell "missing table" apart from "missing column".
        """
        table_names = list(table_names)
        if not table_names:
            return {}

        key = self.cache_key(table_names)
        entry = self._entries.get(key)
        now = self._clock()
        if entry is not None and now - entry.stored_at < self.ttl:
            logger.debug("Column cache hit for %s", key)
            return entry.data

        logger.debug("Column cache miss for %s, querying store", key)
        fetched = self.source.fetch_columns(table_names)
        data = {table: frozenset(columns) for table, columns in fetched.items()}
        for table in table_names:
            data.setdefault(table, frozenset())

        self._entries[key] = _CacheEntry(data=data, stored_at=now)
        return data

    def column_exists(self, table_name: str, column_name: str) -> bool:
        return column_name in self.columns_for([table_name]).get(table_name, frozenset())

    def filter_existing_columns(
        self,
        table_name: str,
        column_names: Iterable[str],
        column_map: ColumnMap | None = None,
    ) -> list[str]:
        """Keep only the column names table_name has, in their original order."""
        if column_map is None:
            column_map = self.columns_for([table_name])
        table_columns = column_map.get(table_name, frozenset())
        return [column for column in column_names if column in table_columns]

    def clear(self) -> None:
        """Forget everything - next lookup goes to the store."""
        self._entries.clear()
