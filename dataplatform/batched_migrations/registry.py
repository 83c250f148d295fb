from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable, Sequence

from django.db import IntegrityError, transaction
from django.utils import timezone

from . import constants
from .exceptions import ConfigurationError, MigrationNotFoundError
from .jobs import JobRegistry, default_registry
from .models import BatchedBackgroundMigration, identity_digest
from .store import cardinality_estimate, database_for_schema, max_column_value
from .strategies import strategy_class

logger = logging.getLogger(__name__)

Status = BatchedBackgroundMigration.Status


def _as_interval(value: timedelta | float | int) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


def _configuration(job_class_name, table_name, column_name, job_arguments) -> dict[str, Any]:
    return {
        "job_class_name": job_class_name,
        "table_name": table_name,
        "column_name": column_name,
        "job_arguments": list(job_arguments),
    }


def _validate_sizes(batch_size: int, sub_batch_size: int, max_batch_size: int | None) -> None:
    if batch_size < 1:
        raise ConfigurationError(f"batch_size must be >= 1 (got {batch_size})")
    if sub_batch_size < 1:
        raise ConfigurationError(
            f"sub_batch_size must be >= 1 (got {sub_batch_size})")
    if sub_batch_size > batch_size:
        raise ConfigurationError(
            f"sub_batch_size ({sub_batch_size}) cannot exceed batch_size ({batch_size})"
        )
    if max_batch_size is not None and max_batch_size < batch_size:
        raise ConfigurationError(
            f"max_batch_size ({max_batch_size}) cannot be below batch_size ({batch_size})"
        )


class MigrationRegistry:
    """Enqueue, look up and administer batched background migrations."""

    def __init__(
        self,
        *,
        jobs: JobRegistry | None = None,
        clock: Callable[[], Any] | None = None,
    ) -> None:
        self._jobs = jobs or default_registry
        self._clock = clock or timezone.now

    def enqueue(
        self,
        job_class_name: str,
        table_name: str,
        column_name: str,
        job_arguments: Sequence[Any] = (),
        *,
        interval: timedelta | float | int,
        min_value: int = constants.BATCH_MIN_VALUE,
        max_value: int | None = None,
        batch_strategy_name: str = constants.DEFAULT_BATCH_STRATEGY,
        batch_size: int = constants.BATCH_SIZE,
        sub_batch_size: int = constants.SUB_BATCH_SIZE,
        max_batch_size: int | None = None,
        schema_tag: str = constants.DEFAULT_SCHEMA_TAG,
        queued_migration_version: str | None = None,
    ) -> BatchedBackgroundMigration:
        """
        Create a migration, or return the existing one for the same identity key.

        The interval is raised to ``BATCH_MIN_DELAY`` when shorter. When
        ``max_value`` is omitted it is read from ``MAX(column)``; an empty
        table yields a migration that is already finished.
        """
        job_arguments = list(job_arguments)
        existing = self.find(job_class_name, table_name,
                             column_name, job_arguments)
        if existing is not None:
            logger.warning(
                "Batched background migration not enqueued because it already exists: %s",
                _configuration(job_class_name, table_name,
                               column_name, job_arguments),
            )
            return existing

        self._jobs.validate_arguments(job_class_name, job_arguments)
        strategy_class(batch_strategy_name)
        _validate_sizes(batch_size, sub_batch_size, max_batch_size)
        using = database_for_schema(schema_tag)

        interval = _as_interval(interval)
        if interval < constants.BATCH_MIN_DELAY:
            interval = constants.BATCH_MIN_DELAY

        status = Status.ACTIVE
        if max_value is None:
            max_value = max_column_value(table_name, column_name, using=using)
            if max_value is None or max_value < min_value:
                status = Status.FINISHED
                max_value = min_value
        elif max_value < min_value:
            raise ConfigurationError(
                f"max_value ({max_value}) cannot be below min_value ({min_value})"
            )

        now = self._clock()
        migration = BatchedBackgroundMigration(
            job_class_name=job_class_name,
            table_name=table_name,
            column_name=column_name,
            job_arguments=job_arguments,
            schema_tag=schema_tag,
            queued_migration_version=queued_migration_version,
            min_value=min_value,
            max_value=max_value,
            status=status,
            batch_size=batch_size,
            sub_batch_size=sub_batch_size,
            max_batch_size=max_batch_size,
            interval=interval,
            batch_strategy_name=batch_strategy_name,
            total_tuple_count=cardinality_estimate(table_name, using=using),
            created_at=now,
            finished_at=now if status == Status.FINISHED else None,
        )
        try:
            with transaction.atomic():
                migration.save()
        except IntegrityError:
            existing = self.find(job_class_name, table_name,
                                 column_name, job_arguments)
            if existing is None:
                raise
            logger.warning(
                "Batched background migration %s was enqueued concurrently", existing.pk
            )
            return existing

        logger.info(
            "Enqueued batched background migration %s (%s) over [%s, %s]",
            migration.pk,
            migration.status,
            migration.min_value,
            migration.max_value,
        )
        return migration

    def find(
        self,
        job_class_name: str,
        table_name: str,
        column_name: str,
        job_arguments: Sequence[Any] = (),
    ) -> BatchedBackgroundMigration | None:
        digest = identity_digest(
            job_class_name, table_name, column_name, job_arguments)
        return BatchedBackgroundMigration.objects.filter(identity_digest=digest).first()

    def get(
        self,
        job_class_name: str,
        table_name: str,
        column_name: str,
        job_arguments: Sequence[Any] = (),
    ) -> BatchedBackgroundMigration:
        migration = self.find(job_class_name, table_name,
                              column_name, job_arguments)
        if migration is None:
            raise MigrationNotFoundError(
                _configuration(job_class_name, table_name,
                               column_name, job_arguments)
            )
        return migration

    def delete(
        self,
        job_class_name: str,
        table_name: str,
        column_name: str,
        job_arguments: Sequence[Any] = (),
    ) -> None:
        digest = identity_digest(
            job_class_name, table_name, column_name, job_arguments)
        deleted, _ = BatchedBackgroundMigration.objects.filter(
            identity_digest=digest).delete()
        if deleted:
            logger.info(
                "Deleted batched background migration %s",
                _configuration(job_class_name, table_name,
                               column_name, job_arguments),
            )

    def pause(self, job_class_name, table_name, column_name, job_arguments=()) -> BatchedBackgroundMigration:
        return self._transition(
            job_class_name, table_name, column_name, job_arguments,
            allowed={Status.ACTIVE}, target=Status.PAUSED,
        )

    def resume(self, job_class_name, table_name, column_name, job_arguments=()) -> BatchedBackgroundMigration:
        return self._transition(
            job_class_name, table_name, column_name, job_arguments,
            allowed={Status.PAUSED, Status.FAILED}, target=Status.ACTIVE,
        )

    @transaction.atomic
    def update_batch_sizes(
        self,
        job_class_name: str,
        table_name: str,
        column_name: str,
        job_arguments: Sequence[Any] = (),
        *,
        batch_size: int | None = None,
        sub_batch_size: int | None = None,
    ) -> BatchedBackgroundMigration:
        migration = self.get(job_class_name, table_name,
                             column_name, job_arguments)
        migration = BatchedBackgroundMigration.objects.select_for_update().get(pk=migration.pk)
        new_batch = batch_size if batch_size is not None else migration.batch_size
        new_sub = sub_batch_size if sub_batch_size is not None else migration.sub_batch_size
        _validate_sizes(new_batch, new_sub, migration.max_batch_size)
        migration.batch_size = new_batch
        migration.sub_batch_size = new_sub
        migration.save(update_fields=["batch_size", "sub_batch_size", "updated_at"])
        return migration

    @transaction.atomic
    def _transition(self, job_class_name, table_name, column_name, job_arguments, *, allowed, target):
        migration = self.get(job_class_name, table_name,
                             column_name, job_arguments)
        migration = BatchedBackgroundMigration.objects.select_for_update().get(pk=migration.pk)
        if migration.status == target:
            return migration
        if migration.status not in allowed:
            raise ConfigurationError(
                f"Cannot move batched migration {migration.pk} from "
                f"'{migration.status}' to '{target}'"
            )
        previous = migration.status
        migration.status = target
        migration.save(update_fields=["status", "updated_at"])
        logger.info(
            "Batched migration %s moved from %s to %s", migration.pk, previous, target
        )
        return migration
