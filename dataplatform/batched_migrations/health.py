"""Pre-flight checks for code that depends on a finished migration."""

from __future__ import annotations

import json
import logging
import shlex
from typing import Any, Sequence

from .exceptions import (
    BatchInProgressError,
    MigrationNotFinishedError,
    MigrationNotFoundError,
)
from .finalizer import BatchedMigrationFinalizer
from .registry import MigrationRegistry
from .store import require_no_open_transaction

logger = logging.getLogger(__name__)


def finalize_command(
    job_class_name: str,
    table_name: str,
    column_name: str,
    job_arguments: Sequence[Any],
) -> str:
    """Shell command that finalizes the given migration by hand."""
    parts = [
        "python",
        "manage.py",
        "finalize_batched_migration",
        job_class_name,
        table_name,
        column_name,
        json.dumps(list(job_arguments)),
    ]
    return " ".join(shlex.quote(part) for part in parts)


class HealthGate:
    """
    Assert that a batched migration has finished before proceeding.

    A missing migration is taken to mean it was never needed and is only
    logged, unless ``strict`` is set.
    """

    operation = "ensure_batched_migration_is_finished"

    def __init__(
        self,
        finalizer: BatchedMigrationFinalizer,
        registry: MigrationRegistry,
        *,
        strict: bool = False,
    ) -> None:
        self._finalizer = finalizer
        self._registry = registry
        self._strict = strict

    def ensure_finished(
        self,
        job_class_name: str,
        table_name: str,
        column_name: str,
        job_arguments: Sequence[Any] = (),
        *,
        finalize: bool = True,
    ) -> None:
        require_no_open_transaction(self.operation)
        job_arguments = list(job_arguments)
        configuration = {
            "job_class_name": job_class_name,
            "table_name": table_name,
            "column_name": column_name,
            "job_arguments": job_arguments,
        }
        migration = self._registry.find(
            job_class_name, table_name, column_name, job_arguments)
        if migration is None:
            if self._strict:
                raise MigrationNotFoundError(configuration)
            logger.warning(
                "Could not find batched background migration for the given configuration: %s",
                configuration,
            )
            return

        if migration.is_finished:
            return

        if finalize:
            try:
                self._finalizer.finalize(
                    job_class_name, table_name, column_name, job_arguments)
            except BatchInProgressError:
                logger.warning(
                    "Migration %s has a batch in progress; leaving it to the scheduler",
                    migration.pk,
                )
            migration.refresh_from_db()
            if migration.is_finished:
                return

        raise MigrationNotFinishedError(
            migration.status,
            configuration,
            finalize_command(job_class_name, table_name,
                             column_name, job_arguments),
        )
