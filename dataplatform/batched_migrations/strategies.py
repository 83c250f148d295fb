"""
Batching strategies compute the key range covered by the next batch.

A migration stores the name of its strategy in ``batch_strategy_name``;
``strategy_for`` maps that name onto one of the classes in ``STRATEGIES``.
Every strategy is monotonic: a range never overlaps or precedes the one
returned before it, and ``None`` means the key range is exhausted.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Mapping

from django.db import DEFAULT_DB_ALIAS, connections

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .models import BatchedBackgroundMigration

BatchRange = tuple[int, int]


class BatchingStrategy(ABC):
    """Computes ``(start, end)`` bounds within ``[min_value, max_value]``."""

    name: str = ""

    def __init__(
        self,
        min_value: int,
        max_value: int,
        *,
        using: str = DEFAULT_DB_ALIAS,
    ) -> None:
        self.min_value = min_value
        self.max_value = max_value
        self.using = using

    @abstractmethod
    def next_range(
        self,
        table: str,
        column: str,
        previous_end: int | None,
        batch_size: int,
    ) -> BatchRange | None:
        raise NotImplementedError

    def _start_after(self, previous_end: int | None) -> int:
        if previous_end is None:
            return self.min_value
        return max(previous_end + 1, self.min_value)


class PrimaryKeyBatchingStrategy(BatchingStrategy):
    """Treats the column as a dense key and slices it arithmetically."""

    name = "primary_key"

    def next_range(self, table, column, previous_end, batch_size):
        if previous_end is not None and previous_end >= self.max_value:
            return None
        start = self._start_after(previous_end)
        if start > self.max_value:
            return None
        end = min(start + batch_size - 1, self.max_value)
        return start, end


class KeysetBatchingStrategy(BatchingStrategy):
    """
    Walks an indexed, possibly sparse key by sampling the table itself.

    Each range starts at the first existing key after the previous batch and
    ends at the key ``batch_size - 1`` rows further on, so a batch always
    holds at most ``batch_size`` rows regardless of gaps in the key space.
    """

    name = "keyset"

    def next_range(self, table, column, previous_end, batch_size):
        if previous_end is not None and previous_end >= self.max_value:
            return None
        lower = self._start_after(previous_end)
        connection = connections[self.using]
        quote = connection.ops.quote_name
        col, tbl = quote(column), quote(table)
        with connection.cursor() as cursor:
            cursor.execute(
                f"SELECT MIN({col}) FROM {tbl} WHERE {col} >= %s AND {col} <= %s",
                [lower, self.max_value],
            )
            row = cursor.fetchone()
            if row is None or row[0] is None:
                return None
            start = int(row[0])
            cursor.execute(
                f"SELECT {col} FROM {tbl} WHERE {col} >= %s AND {col} <= %s "
                f"ORDER BY {col} LIMIT 1 OFFSET %s",
                [start, self.max_value, batch_size - 1],
            )
            row = cursor.fetchone()
        end = self.max_value if row is None else int(row[0])
        return start, end


STRATEGIES: Mapping[str, type[BatchingStrategy]] = {
    PrimaryKeyBatchingStrategy.name: PrimaryKeyBatchingStrategy,
    KeysetBatchingStrategy.name: KeysetBatchingStrategy,
}


def strategy_class(name: str) -> type[BatchingStrategy]:
    try:
        return STRATEGIES[name]
    except KeyError as exc:
        raise ConfigurationError(
            f"Unknown batching strategy {name!r}; expected one of {sorted(STRATEGIES)}"
        ) from exc


def strategy_for(
    migration: BatchedBackgroundMigration,
    *,
    using: str = DEFAULT_DB_ALIAS,
) -> BatchingStrategy:
    cls = strategy_class(migration.batch_strategy_name)
    return cls(migration.min_value, migration.max_value, using=using)
