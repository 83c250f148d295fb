"""Transformation logic invoked once per batch, and the registry naming it."""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, Sequence

from django.db import DEFAULT_DB_ALIAS, connections, transaction

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class BatchedMigrationJob(ABC):
    """
    Base class for per-batch transformation logic.

    ``perform`` receives the inclusive key range of the batch and must commit
    its own work in ``sub_batch_size`` chunks. Subclasses that take extra
    arguments declare how many with ``job_arguments_count`` so a wrong-arity
    enqueue is rejected before any batch runs.
    """

    job_arguments_count: int | None = None

    def __init__(self, *, using: str = DEFAULT_DB_ALIAS) -> None:
        self.using = using

    @abstractmethod
    def perform(
        self,
        start: int,
        end: int,
        table: str,
        column: str,
        sub_batch_size: int,
        *job_arguments: Any,
    ) -> int | None:
        """Process the inclusive range ``[start, end]``; may return a row count."""

    @staticmethod
    def each_sub_batch(start: int, end: int, sub_batch_size: int) -> Iterator[tuple[int, int]]:
        lower = start
        while lower <= end:
            upper = min(lower + sub_batch_size - 1, end)
            yield lower, upper
            lower = upper + 1


class JobRegistry:
    """Maps job identifiers onto ``BatchedMigrationJob`` subclasses."""

    def __init__(self) -> None:
        self._jobs: dict[str, type[BatchedMigrationJob]] = {}

    def register(
        self, name: str
    ) -> Callable[[type[BatchedMigrationJob]], type[BatchedMigrationJob]]:
        def decorator(job_class: type[BatchedMigrationJob]) -> type[BatchedMigrationJob]:
            if name in self._jobs and self._jobs[name] is not job_class:
                raise ValueError(f"job {name!r} is already registered")
            if inspect.isabstract(job_class):
                raise ConfigurationError(
                    f"job {name!r} does not implement perform()")
            self._jobs[name] = job_class
            return job_class

        return decorator

    def unregister(self, name: str) -> None:
        self._jobs.pop(name, None)

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def names(self) -> list[str]:
        return sorted(self._jobs)

    def get(self, name: str) -> type[BatchedMigrationJob]:
        try:
            return self._jobs[name]
        except KeyError as exc:
            raise ConfigurationError(
                f"Unknown batched migration job {name!r}") from exc

    def build(self, name: str, *, using: str = DEFAULT_DB_ALIAS) -> BatchedMigrationJob:
        return self.get(name)(using=using)

    def validate_arguments(self, name: str, job_arguments: Sequence[Any]) -> None:
        expected = self.get(name).job_arguments_count
        if expected is not None and expected != len(job_arguments):
            raise ConfigurationError(
                f"Wrong number of job arguments for {name} "
                f"(given {len(job_arguments)}, expected {expected})"
            )


default_registry = JobRegistry()


@default_registry.register("copy_column_using_background_migration")
class CopyColumnJob(BatchedMigrationJob):
    """Copies ``source_column`` into ``target_column`` for every row in range."""

    job_arguments_count = 2

    def perform(self, start, end, table, column, sub_batch_size, *job_arguments):
        source_column, target_column = job_arguments
        connection = connections[self.using]
        quote = connection.ops.quote_name
        sql = (
            f"UPDATE {quote(table)} SET {quote(target_column)} = {quote(source_column)} "
            f"WHERE {quote(column)} BETWEEN %s AND %s"
        )
        updated = 0
        for lower, upper in self.each_sub_batch(start, end, sub_batch_size):
            with transaction.atomic(using=self.using):
                with connection.cursor() as cursor:
                    cursor.execute(sql, [lower, upper])
                    updated += max(cursor.rowcount, 0)
        logger.debug(
            "Copied %s rows of %s.%s -> %s in [%s, %s]",
            updated,
            table,
            source_column,
            target_column,
            start,
            end,
        )
        return updated
