"""
Exceptions raised by the batched background migration engine.

Exception Hierarchy:
    BatchedMigrationError (base)
    +-- ConfigurationError
    +-- TransactionOpenError
    +-- MigrationNotFoundError
    +-- MigrationNotFinishedError
    +-- BatchInProgressError
"""

from __future__ import annotations

from typing import Any, Mapping


class BatchedMigrationError(Exception):
    """Base class for all batched migration errors."""


class ConfigurationError(BatchedMigrationError, ValueError):
    """
    A migration was configured in a way that can never run.

    Raised at enqueue time for unknown jobs or strategies, a job argument
    count that does not match the job's declaration, and invalid batch
    sizes or bounds.
    """


class TransactionOpenError(BatchedMigrationError):
    """An operation that commits each batch was called inside a transaction."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(
            f"`{operation}` cannot be run inside a transaction. "
            "Run it outside of `transaction.atomic()` (for schema migrations, "
            "set `atomic = False` on the migration class)."
        )


class MigrationNotFoundError(BatchedMigrationError, LookupError):
    """No batched migration matches the given configuration."""

    def __init__(self, configuration: Mapping[str, Any]) -> None:
        self.configuration = dict(configuration)
        super().__init__(
            f"Could not find batched background migration for {self.configuration}"
        )


class MigrationNotFinishedError(BatchedMigrationError):
    """
    A dependent operation required a migration that has not finished.

    Attributes:
        status: The migration status at the time of the check.
        configuration: The identity key of the migration.
        command: Shell command that finalizes the migration manually.
    """

    def __init__(
        self,
        status: str,
        configuration: Mapping[str, Any],
        command: str,
    ) -> None:
        self.status = status
        self.configuration = dict(configuration)
        self.command = command
        super().__init__(
            "Expected batched background migration for the given configuration "
            f"to be marked as 'finished', but it is '{status}':"
            f"\t{self.configuration}"
            "\n\n"
            "Finalize it manually by running the following command in a "
            "`bash` or `sh` shell:"
            "\n\n"
            f"\t{command}"
        )


class BatchInProgressError(BatchedMigrationError):
    """A batch is already running for the migration being driven."""

    def __init__(self, migration_id: int) -> None:
        self.migration_id = migration_id
        super().__init__(
            f"Batched migration {migration_id} already has a running batch"
        )
