from __future__ import annotations

import hashlib
import json
from typing import Any, Sequence

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from . import constants


def identity_digest(
    job_class_name: str,
    table_name: str,
    column_name: str,
    job_arguments: Sequence[Any],
) -> str:
    """Stable digest of the identity key used to dedupe migrations."""
    payload = json.dumps(
        [job_class_name, table_name, column_name, list(job_arguments)],
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class BatchedBackgroundMigration(models.Model):
    """A data transformation over a key range, executed in small batches."""

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        PAUSED = "paused", "Paused"
        FINISHED = "finished", "Finished"
        FAILED = "failed", "Failed"

    job_class_name = models.CharField(max_length=120)
    table_name = models.CharField(max_length=120)
    column_name = models.CharField(max_length=120)
    job_arguments = models.JSONField(default=list, blank=True)
    identity_digest = models.CharField(max_length=64, unique=True, editable=False)
    schema_tag = models.CharField(
        max_length=64, default=constants.DEFAULT_SCHEMA_TAG)
    queued_migration_version = models.CharField(
        max_length=32, blank=True, null=True)

    min_value = models.BigIntegerField(default=constants.BATCH_MIN_VALUE)
    max_value = models.BigIntegerField()
    cursor_value = models.BigIntegerField(blank=True, null=True)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.ACTIVE,
    )

    batch_size = models.PositiveIntegerField(default=constants.BATCH_SIZE)
    sub_batch_size = models.PositiveIntegerField(
        default=constants.SUB_BATCH_SIZE)
    max_batch_size = models.PositiveIntegerField(blank=True, null=True)
    interval = models.DurationField(default=constants.BATCH_MIN_DELAY)
    batch_strategy_name = models.CharField(
        max_length=64, default=constants.DEFAULT_BATCH_STRATEGY)
    total_tuple_count = models.BigIntegerField(blank=True, null=True)

    created_at = models.DateTimeField(default=timezone.now)
    started_at = models.DateTimeField(blank=True, null=True)
    finished_at = models.DateTimeField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(min_value__lte=F("max_value")),
                name="batched_migration_min_lte_max",
            ),
            models.CheckConstraint(
                condition=Q(batch_size__gte=1),
                name="batched_migration_batch_size_positive",
            ),
            models.CheckConstraint(
                condition=Q(sub_batch_size__gte=1),
                name="batched_migration_sub_batch_size_positive",
            ),
            models.CheckConstraint(
                condition=Q(sub_batch_size__lte=F("batch_size")),
                name="batched_migration_sub_batch_lte_batch",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "id"],
                         name="batched_migration_status_idx"),
        ]

    def __str__(self) -> str:
        cursor = self.cursor_value if self.cursor_value is not None else "-"
        return (
            f"{self.job_class_name} on {self.table_name}.{self.column_name} "
            f"({self.status}) cursor={cursor}/{self.max_value}"
        )

    def save(self, *args, **kwargs) -> None:
        self.identity_digest = identity_digest(*self.identity_key())
        super().save(*args, **kwargs)

    def identity_key(self) -> tuple[str, str, str, list[Any]]:
        return (
            self.job_class_name,
            self.table_name,
            self.column_name,
            list(self.job_arguments),
        )

    def configuration(self) -> dict[str, Any]:
        return {
            "job_class_name": self.job_class_name,
            "table_name": self.table_name,
            "column_name": self.column_name,
            "job_arguments": list(self.job_arguments),
        }

    @property
    def is_finished(self) -> bool:
        return self.status == self.Status.FINISHED

    @property
    def progress(self) -> float:
        """Fraction of the key range already covered, between 0 and 1."""
        if self.is_finished:
            return 1.0
        if self.cursor_value is None:
            return 0.0
        span = self.max_value - self.min_value + 1
        done = self.cursor_value - self.min_value + 1
        return max(0.0, min(1.0, done / span))

    @property
    def estimated_remaining(self) -> int | None:
        if self.total_tuple_count is None:
            return None
        return int(round(self.total_tuple_count * (1.0 - self.progress)))


class BatchedBackgroundMigrationJob(models.Model):
    """One attempt at processing a single batch of a migration."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        RUNNING = "running", "Running"
        SUCCEEDED = "succeeded", "Succeeded"
        FAILED = "failed", "Failed"

    migration = models.ForeignKey(
        BatchedBackgroundMigration,
        on_delete=models.CASCADE,
        related_name="jobs",
    )
    min_value = models.BigIntegerField()
    max_value = models.BigIntegerField()
    batch_size = models.PositiveIntegerField()
    sub_batch_size = models.PositiveIntegerField()
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    attempts = models.PositiveIntegerField(default=0)
    started_at = models.DateTimeField(blank=True, null=True)
    finished_at = models.DateTimeField(blank=True, null=True)
    duration_seconds = models.FloatField(blank=True, null=True)
    rows_processed = models.BigIntegerField(blank=True, null=True)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(min_value__lte=F("max_value")),
                name="batched_migration_job_min_lte_max",
            ),
            models.UniqueConstraint(
                fields=["migration"],
                condition=Q(status="running"),
                name="batched_migration_single_running_job",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"job {self.pk} [{self.min_value}, {self.max_value}] "
            f"({self.status}) attempt={self.attempts}"
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in {self.Status.SUCCEEDED, self.Status.FAILED}
