from __future__ import annotations

from datetime import timedelta

from django.db import DatabaseError, transaction
from django.test import TestCase

from dataplatform.batched_migrations.constants import BATCH_MIN_DELAY
from dataplatform.batched_migrations.exceptions import (
    ConfigurationError,
    MigrationNotFoundError,
)
from dataplatform.batched_migrations.jobs import BatchedMigrationJob, JobRegistry
from dataplatform.batched_migrations.models import (
    BatchedBackgroundMigration,
    BatchedBackgroundMigrationJob,
)
from dataplatform.batched_migrations.registry import MigrationRegistry

from .support import FakeClock, create_widgets_table

Status = BatchedBackgroundMigration.Status


def build_jobs() -> JobRegistry:
    jobs = JobRegistry()

    @jobs.register("backfill_names")
    class BackfillNames(BatchedMigrationJob):
        job_arguments_count = 2

        def perform(self, start, end, table, column, sub_batch_size, *job_arguments):
            return 0

    @jobs.register("untyped_job")
    class UntypedJob(BatchedMigrationJob):
        def perform(self, start, end, table, column, sub_batch_size, *job_arguments):
            return 0

    return jobs


class EnqueueTests(TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.registry = MigrationRegistry(jobs=build_jobs(), clock=self.clock)
        create_widgets_table("widgets", ids=(1, 7, 42))
        create_widgets_table("empty_widgets")

    def enqueue(self, **overrides):
        kwargs = {
            "interval": timedelta(minutes=2),
            "max_value": 2500,
        }
        kwargs.update(overrides)
        return self.registry.enqueue(
            "backfill_names", "events", "id", ["name", "name_copy"], **kwargs
        )

    def test_creates_active_migration_with_defaults(self) -> None:
        migration = self.enqueue()
        self.assertEqual(migration.status, Status.ACTIVE)
        self.assertEqual(migration.min_value, 1)
        self.assertEqual(migration.max_value, 2500)
        self.assertEqual(migration.batch_size, 1000)
        self.assertEqual(migration.sub_batch_size, 100)
        self.assertEqual(migration.batch_strategy_name, "primary_key")
        self.assertEqual(migration.schema_tag, "main")
        self.assertIsNone(migration.cursor_value)
        self.assertEqual(migration.created_at, self.clock.current)
        self.assertEqual(migration.job_arguments, ["name", "name_copy"])

    def test_duplicate_enqueue_returns_existing_without_changes(self) -> None:
        first = self.enqueue()
        with self.assertLogs("dataplatform.batched_migrations.registry", "WARNING") as logs:
            second = self.enqueue(batch_size=50, sub_batch_size=10)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(second.batch_size, 1000)
        self.assertEqual(BatchedBackgroundMigration.objects.count(), 1)
        self.assertFalse(BatchedBackgroundMigrationJob.objects.exists())
        self.assertIn("already exists", logs.output[0])

    def test_different_arguments_are_distinct_migrations(self) -> None:
        first = self.enqueue()
        second = self.registry.enqueue(
            "backfill_names",
            "events",
            "id",
            ["title", "title_copy"],
            interval=120,
            max_value=10,
        )
        self.assertNotEqual(first.pk, second.pk)
        self.assertEqual(BatchedBackgroundMigration.objects.count(), 2)

    def test_interval_is_clamped_to_minimum(self) -> None:
        migration = self.enqueue(interval=timedelta(seconds=10))
        self.assertEqual(migration.interval, BATCH_MIN_DELAY)

    def test_interval_accepts_seconds(self) -> None:
        migration = self.enqueue(interval=600)
        self.assertEqual(migration.interval, timedelta(minutes=10))

    def test_max_value_defaults_to_column_maximum(self) -> None:
        migration = self.registry.enqueue(
            "backfill_names", "widgets", "id", ["name", "name_copy"], interval=120
        )
        self.assertEqual(migration.max_value, 42)
        self.assertEqual(migration.status, Status.ACTIVE)
        self.assertEqual(migration.total_tuple_count, 3)

    def test_empty_table_is_created_finished(self) -> None:
        migration = self.registry.enqueue(
            "backfill_names", "empty_widgets", "id", ["name", "name_copy"], interval=120
        )
        self.assertEqual(migration.status, Status.FINISHED)
        self.assertEqual(migration.max_value, migration.min_value)
        self.assertEqual(migration.finished_at, self.clock.current)
        self.assertTrue(migration.is_finished)

    def test_missing_cardinality_does_not_block_creation(self) -> None:
        migration = self.enqueue()
        self.assertIsNone(migration.total_tuple_count)

    def test_store_errors_during_bounds_computation_propagate(self) -> None:
        with self.assertRaises(DatabaseError):
            with transaction.atomic():
                self.registry.enqueue(
                    "backfill_names", "missing_table", "id", ["a", "b"], interval=120
                )
        self.assertFalse(BatchedBackgroundMigration.objects.exists())

    def test_wrong_argument_count_is_rejected(self) -> None:
        with self.assertRaisesMessage(ConfigurationError, "given 1, expected 2"):
            self.registry.enqueue(
                "backfill_names", "events", "id", ["name"], interval=120, max_value=10
            )
        self.assertFalse(BatchedBackgroundMigration.objects.exists())

    def test_jobs_without_declared_arity_accept_any_arguments(self) -> None:
        migration = self.registry.enqueue(
            "untyped_job", "events", "id", [1, 2, 3], interval=120, max_value=10
        )
        self.assertEqual(migration.job_arguments, [1, 2, 3])

    def test_unknown_job_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.registry.enqueue("nope", "events", "id", [], interval=120, max_value=10)

    def test_unknown_strategy_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.enqueue(batch_strategy_name="LooseIndexScan")

    def test_invalid_batch_sizes_are_rejected(self) -> None:
        for overrides in (
            {"batch_size": 0},
            {"sub_batch_size": 0},
            {"batch_size": 10, "sub_batch_size": 20},
            {"batch_size": 100, "max_batch_size": 50},
        ):
            with self.subTest(**overrides):
                with self.assertRaises(ConfigurationError):
                    self.enqueue(**overrides)

    def test_max_below_min_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.enqueue(min_value=10, max_value=5)

    def test_unknown_schema_tag_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.enqueue(schema_tag="ci")

    def test_queued_version_and_max_batch_size_are_persisted(self) -> None:
        migration = self.enqueue(
            queued_migration_version="20240529184615", max_batch_size=5000
        )
        migration.refresh_from_db()
        self.assertEqual(migration.queued_migration_version, "20240529184615")
        self.assertEqual(migration.max_batch_size, 5000)


class AdministrationTests(TestCase):
    def setUp(self) -> None:
        self.registry = MigrationRegistry(jobs=build_jobs(), clock=FakeClock())
        self.key = ("backfill_names", "events", "id", ["name", "name_copy"])
        self.migration = self.registry.enqueue(*self.key, interval=120, max_value=100)

    def test_delete_removes_migration_and_jobs(self) -> None:
        self.migration.jobs.create(
            min_value=1, max_value=10, batch_size=10, sub_batch_size=5,
            status=BatchedBackgroundMigrationJob.Status.SUCCEEDED,
        )
        self.registry.delete(*self.key)
        self.assertFalse(BatchedBackgroundMigration.objects.exists())
        self.assertFalse(BatchedBackgroundMigrationJob.objects.exists())

    def test_delete_missing_is_noop(self) -> None:
        self.registry.delete("backfill_names", "events", "id", ["other", "args"])
        self.assertEqual(BatchedBackgroundMigration.objects.count(), 1)

    def test_get_missing_raises(self) -> None:
        with self.assertRaises(MigrationNotFoundError):
            self.registry.get("backfill_names", "events", "id", ["x", "y"])

    def test_pause_and_resume(self) -> None:
        paused = self.registry.pause(*self.key)
        self.assertEqual(paused.status, Status.PAUSED)
        resumed = self.registry.resume(*self.key)
        self.assertEqual(resumed.status, Status.ACTIVE)

    def test_cannot_pause_finished_migration(self) -> None:
        BatchedBackgroundMigration.objects.filter(pk=self.migration.pk).update(
            status=Status.FINISHED
        )
        with self.assertRaises(ConfigurationError):
            self.registry.pause(*self.key)

    def test_update_batch_sizes(self) -> None:
        updated = self.registry.update_batch_sizes(
            *self.key, batch_size=250, sub_batch_size=25)
        updated.refresh_from_db()
        self.assertEqual(updated.batch_size, 250)
        self.assertEqual(updated.sub_batch_size, 25)

    def test_update_batch_sizes_validates(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.registry.update_batch_sizes(*self.key, batch_size=50)
        self.migration.refresh_from_db()
        self.assertEqual(self.migration.batch_size, 1000)
