from __future__ import annotations

import logging
from typing import Any, Sequence

from .exceptions import BatchInProgressError
from .models import BatchedBackgroundMigration
from .registry import MigrationRegistry
from .runner import BatchOutcome, BatchRunner
from .store import database_for_schema, require_no_open_transaction

logger = logging.getLogger(__name__)

Status = BatchedBackgroundMigration.Status


class BatchedMigrationFinalizer:
    """Drive a single migration to completion synchronously, ignoring pacing."""

    operation = "finalize_batched_migration"

    def __init__(self, runner: BatchRunner, registry: MigrationRegistry) -> None:
        self._runner = runner
        self._registry = registry

    def finalize(
        self,
        job_class_name: str,
        table_name: str,
        column_name: str,
        job_arguments: Sequence[Any] = (),
    ) -> BatchedBackgroundMigration:
        require_no_open_transaction(self.operation)
        migration = self._registry.get(
            job_class_name, table_name, column_name, job_arguments)
        require_no_open_transaction(
            self.operation, using=database_for_schema(migration.schema_tag))

        if migration.status in (Status.PAUSED, Status.FAILED):
            migration = self._registry.resume(
                job_class_name, table_name, column_name, job_arguments)

        logger.info(
            "Finalizing migration %s from cursor %s (%s)",
            migration.pk,
            migration.cursor_value,
            migration.status,
        )
        batches = 0
        while migration.status == Status.ACTIVE:
            outcome = self._runner.run_next_batch(migration)
            if outcome.status == BatchOutcome.BUSY:
                raise BatchInProgressError(migration.pk)
            if outcome.status == BatchOutcome.SUCCEEDED:
                batches += 1
            migration.refresh_from_db()

        logger.info(
            "Finalize of migration %s ended as %s after %s batches",
            migration.pk,
            migration.status,
            batches,
        )
        return migration
