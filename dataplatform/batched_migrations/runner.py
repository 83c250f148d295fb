from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from django.db import transaction
from django.utils import timezone

from . import constants
from .jobs import JobRegistry, default_registry
from .models import BatchedBackgroundMigration, BatchedBackgroundMigrationJob
from .optimizer import BatchSizeOptimizer
from .store import database_for_schema
from .strategies import BatchRange, strategy_for

logger = logging.getLogger(__name__)

MigrationStatus = BatchedBackgroundMigration.Status
JobStatus = BatchedBackgroundMigrationJob.Status


@dataclass(frozen=True)
class BatchOutcome:
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"
    BUSY = "busy"

    status: str
    migration_id: int
    migration_status: str
    batch: BatchRange | None = None
    attempts: int = 0
    duration_seconds: float | None = None


class BatchRunner:
    """Execute the next batch of a migration and persist its outcome."""

    def __init__(
        self,
        *,
        jobs: JobRegistry | None = None,
        max_attempts: int = constants.MAX_ATTEMPTS,
        optimizer: BatchSizeOptimizer | None = None,
        clock: Callable[[], Any] | None = None,
        stuck_after: timedelta | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if stuck_after is not None and stuck_after <= timedelta(0):
            raise ValueError("stuck_after must be positive")
        self._jobs = jobs or default_registry
        self._max_attempts = max_attempts
        self._optimizer = optimizer or BatchSizeOptimizer()
        self._clock = clock or timezone.now
        self._stuck_after = stuck_after

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def now(self):
        return self._clock()

    def stuck_deadline(self, migration: BatchedBackgroundMigration, job_record):
        """Time after which a ``running`` job is considered abandoned."""
        threshold = self._stuck_after or (
            migration.interval * constants.STUCK_AFTER_INTERVALS)
        return (job_record.started_at or job_record.created_at) + threshold

    def run_next_batch(self, migration: BatchedBackgroundMigration) -> BatchOutcome:
        """
        Run one batch of ``migration`` without regard to pacing.

        The migration row is locked only while the batch is claimed and while
        its outcome is recorded; the job itself runs outside any transaction
        so it can commit its sub-batches independently.
        """
        claimed = self._claim(migration.pk)
        if isinstance(claimed, BatchOutcome):
            return claimed
        migration, job_record = claimed

        start_clock = time.monotonic()
        logger.info(
            "Migration %s starting batch [%s, %s] attempt %s",
            migration.pk,
            job_record.min_value,
            job_record.max_value,
            job_record.attempts,
        )
        try:
            job = self._jobs.build(
                migration.job_class_name,
                using=database_for_schema(migration.schema_tag),
            )
            rows = job.perform(
                job_record.min_value,
                job_record.max_value,
                migration.table_name,
                migration.column_name,
                job_record.sub_batch_size,
                *migration.job_arguments,
            )
        except Exception as exc:
            duration = time.monotonic() - start_clock
            logger.exception(
                "Migration %s batch [%s, %s] attempt %s failed after %.2fs",
                migration.pk,
                job_record.min_value,
                job_record.max_value,
                job_record.attempts,
                duration,
            )
            return self._record_failure(job_record, duration, exc)
        duration = time.monotonic() - start_clock
        return self._record_success(job_record, duration, rows)

    def _claim(self, migration_id: int):
        with transaction.atomic():
            migration = (
                BatchedBackgroundMigration.objects.select_for_update().get(pk=migration_id)
            )
            if migration.status != MigrationStatus.ACTIVE:
                return BatchOutcome(BatchOutcome.SKIPPED,
                                    migration.pk, migration.status)
            running = migration.jobs.filter(status=JobStatus.RUNNING).first()
            if running is not None:
                if self.now() < self.stuck_deadline(migration, running):
                    logger.debug(
                        "Migration %s already has a running batch", migration.pk)
                    return BatchOutcome(BatchOutcome.BUSY,
                                        migration.pk, migration.status)
                self._reap_stuck(migration, running)
                if migration.status == MigrationStatus.FAILED:
                    return BatchOutcome(
                        BatchOutcome.FAILED,
                        migration.pk,
                        migration.status,
                        batch=(running.min_value, running.max_value),
                        attempts=running.attempts,
                    )

            strategy = strategy_for(
                migration, using=database_for_schema(migration.schema_tag)
            )
            bounds = strategy.next_range(
                migration.table_name,
                migration.column_name,
                migration.cursor_value,
                migration.batch_size,
            )
            now = self.now()
            if bounds is None:
                self._mark_finished(migration, now)
                return BatchOutcome(
                    BatchOutcome.EXHAUSTED, migration.pk, migration.status)

            start, end = bounds
            job_record = migration.jobs.create(
                min_value=start,
                max_value=end,
                batch_size=migration.batch_size,
                sub_batch_size=min(migration.sub_batch_size,
                                   migration.batch_size),
                status=JobStatus.RUNNING,
                attempts=self._next_attempt(migration, bounds),
                started_at=now,
            )
            if migration.started_at is None:
                migration.started_at = now
                migration.save(update_fields=["started_at", "updated_at"])
        return migration, job_record

    def _reap_stuck(self, migration: BatchedBackgroundMigration, job_record) -> None:
        """Fail an abandoned ``running`` job so its range can be claimed again."""
        job_record.status = JobStatus.FAILED
        job_record.finished_at = self.now()
        job_record.last_error = "stuck"
        job_record.save(update_fields=["status", "finished_at", "last_error"])
        logger.warning(
            "Migration %s batch [%s, %s] attempt %s was abandoned; marking it failed",
            migration.pk,
            job_record.min_value,
            job_record.max_value,
            job_record.attempts,
        )
        if job_record.attempts >= self._max_attempts:
            migration.status = MigrationStatus.FAILED
            migration.save(update_fields=["status", "updated_at"])
            logger.error(
                "Migration %s failed: batch [%s, %s] exhausted %s attempts",
                migration.pk,
                job_record.min_value,
                job_record.max_value,
                job_record.attempts,
            )

    def _next_attempt(self, migration: BatchedBackgroundMigration, bounds: BatchRange) -> int:
        # the end bound may move between attempts (batch size changes, keyset
        # sampling), so a retry is identified by its start alone
        previous = migration.jobs.order_by("-id").first()
        if (
                previous is not None
                and previous.status == JobStatus.FAILED
                and previous.min_value == bounds[0]
                and previous.attempts < self._max_attempts
        ):
            return previous.attempts + 1
        # a failed range whose attempts are exhausted was resumed by an operator
        return 1

    def _record_success(self, job_record, duration: float, rows) -> BatchOutcome:
        with transaction.atomic():
            now = self.now()
            job_record.status = JobStatus.SUCCEEDED
            job_record.finished_at = now
            job_record.duration_seconds = duration
            job_record.rows_processed = rows if isinstance(rows, int) else None
            job_record.save(
                update_fields=[
                    "status",
                    "finished_at",
                    "duration_seconds",
                    "rows_processed",
                ]
            )
            migration = (
                BatchedBackgroundMigration.objects.select_for_update().get(
                    pk=job_record.migration_id)
            )
            if migration.cursor_value is None or job_record.max_value > migration.cursor_value:
                migration.cursor_value = job_record.max_value
            fields = ["cursor_value", "updated_at"]
            if self._optimizer.optimize(migration):
                fields.append("batch_size")
            migration.save(update_fields=fields)
            if (
                    migration.cursor_value >= migration.max_value
                    and migration.status == MigrationStatus.ACTIVE
            ):
                self._mark_finished(migration, now)
        logger.info(
            "Migration %s batch [%s, %s] succeeded in %.2fs",
            migration.pk,
            job_record.min_value,
            job_record.max_value,
            duration,
        )
        return BatchOutcome(
            BatchOutcome.SUCCEEDED,
            migration.pk,
            migration.status,
            batch=(job_record.min_value, job_record.max_value),
            attempts=job_record.attempts,
            duration_seconds=duration,
        )

    def _record_failure(self, job_record, duration: float, exc: BaseException) -> BatchOutcome:
        with transaction.atomic():
            now = self.now()
            job_record.status = JobStatus.FAILED
            job_record.finished_at = now
            job_record.duration_seconds = duration
            job_record.last_error = f"{exc.__class__.__name__}: {exc}"
            job_record.save(
                update_fields=[
                    "status",
                    "finished_at",
                    "duration_seconds",
                    "last_error",
                ]
            )
            migration = (
                BatchedBackgroundMigration.objects.select_for_update().get(
                    pk=job_record.migration_id)
            )
            if (
                    job_record.attempts >= self._max_attempts
                    and migration.status != MigrationStatus.FAILED
            ):
                migration.status = MigrationStatus.FAILED
                migration.save(update_fields=["status", "updated_at"])
                logger.error(
                    "Migration %s failed: batch [%s, %s] exhausted %s attempts",
                    migration.pk,
                    job_record.min_value,
                    job_record.max_value,
                    job_record.attempts,
                )
        return BatchOutcome(
            BatchOutcome.FAILED,
            migration.pk,
            migration.status,
            batch=(job_record.min_value, job_record.max_value),
            attempts=job_record.attempts,
            duration_seconds=duration,
        )

    def _mark_finished(self, migration: BatchedBackgroundMigration, now) -> None:
        migration.status = MigrationStatus.FINISHED
        migration.finished_at = now
        migration.save(update_fields=["status", "finished_at", "updated_at"])
        logger.info("Migration %s finished at cursor %s",
                    migration.pk, migration.cursor_value)
