from __future__ import annotations

import json

from django.core.management.base import BaseCommand, CommandError

from ...exceptions import BatchedMigrationError
from ...factory import create_finalizer


class Command(BaseCommand):
    help = "Run a batched background migration to completion, ignoring its interval."

    def add_arguments(self, parser) -> None:
        parser.add_argument("job_class_name")
        parser.add_argument("table_name")
        parser.add_argument("column_name")
        parser.add_argument(
            "job_arguments",
            nargs="?",
            default="[]",
            help="JSON array of extra job arguments (defaults to [])",
        )

    def handle(self, *args, **options):  # type: ignore[override]
        try:
            job_arguments = json.loads(options["job_arguments"])
        except json.JSONDecodeError as exc:
            raise CommandError(f"job_arguments is not valid JSON: {exc}") from exc
        if not isinstance(job_arguments, list):
            raise CommandError("job_arguments must be a JSON array")

        try:
            migration = create_finalizer().finalize(
                options["job_class_name"],
                options["table_name"],
                options["column_name"],
                job_arguments,
            )
        except BatchedMigrationError as exc:
            raise CommandError(str(exc)) from exc

        if not migration.is_finished:
            raise CommandError(
                f"Migration {migration.pk} ended as '{migration.status}' "
                f"at cursor {migration.cursor_value}"
            )
        self.stdout.write(self.style.SUCCESS(
            f"Migration {migration.pk} finished"))
