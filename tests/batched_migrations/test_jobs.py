from __future__ import annotations

from django.db import connection
from django.test import SimpleTestCase, TestCase

from dataplatform.batched_migrations.exceptions import ConfigurationError
from dataplatform.batched_migrations.jobs import (
    BatchedMigrationJob,
    CopyColumnJob,
    JobRegistry,
    default_registry,
)

from .support import create_widgets_table


class JobRegistryTests(SimpleTestCase):
    def setUp(self) -> None:
        self.jobs = JobRegistry()

        @self.jobs.register("two_args")
        class TwoArgs(BatchedMigrationJob):
            job_arguments_count = 2

            def perform(self, start, end, table, column, sub_batch_size, *job_arguments):
                return None

        self.job_class = TwoArgs

    def test_lookup(self) -> None:
        self.assertIs(self.jobs.get("two_args"), self.job_class)
        self.assertIn("two_args", self.jobs)
        self.assertEqual(self.jobs.names(), ["two_args"])

    def test_unknown_job(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.jobs.get("missing")

    def test_conflicting_registration(self) -> None:
        with self.assertRaises(ValueError):
            @self.jobs.register("two_args")
            class Other(BatchedMigrationJob):
                pass

    def test_job_without_perform_is_rejected_at_registration(self) -> None:
        with self.assertRaisesMessage(ConfigurationError, "does not implement perform"):
            @self.jobs.register("incomplete")
            class Incomplete(BatchedMigrationJob):
                job_arguments_count = 0
        self.assertNotIn("incomplete", self.jobs)

    def test_argument_count_validation(self) -> None:
        self.jobs.validate_arguments("two_args", ["a", "b"])
        with self.assertRaisesMessage(ConfigurationError, "given 3, expected 2"):
            self.jobs.validate_arguments("two_args", ["a", "b", "c"])

    def test_default_registry_ships_copy_column(self) -> None:
        self.assertIs(
            default_registry.get("copy_column_using_background_migration"), CopyColumnJob
        )

    def test_each_sub_batch(self) -> None:
        self.assertEqual(
            list(BatchedMigrationJob.each_sub_batch(1, 10, 4)),
            [(1, 4), (5, 8), (9, 10)],
        )
        self.assertEqual(list(BatchedMigrationJob.each_sub_batch(5, 5, 100)), [(5, 5)])


class CopyColumnJobTests(TestCase):
    def setUp(self) -> None:
        create_widgets_table("widgets", ids=(1, 2, 3, 5, 8, 13))

    def fetch(self):
        with connection.cursor() as cursor:
            cursor.execute("SELECT id, name, name_copy FROM widgets ORDER BY id")
            return cursor.fetchall()

    def test_copies_only_rows_in_range(self) -> None:
        updated = CopyColumnJob().perform(2, 8, "widgets", "id", 2, "name", "name_copy")
        self.assertEqual(updated, 4)
        copied = {pk: copy for pk, _, copy in self.fetch()}
        self.assertEqual(
            copied,
            {
                1: None,
                2: "widget-2",
                3: "widget-3",
                5: "widget-5",
                8: "widget-8",
                13: None,
            },
        )
