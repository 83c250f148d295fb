from __future__ import annotations

from django.core.management.base import BaseCommand

from ...models import BatchedBackgroundMigration


class Command(BaseCommand):
    help = "List batched background migrations and their progress."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--status",
            choices=BatchedBackgroundMigration.Status.values,
            help="Only show migrations in this status",
        )

    def handle(self, *args, **options):  # type: ignore[override]
        migrations = BatchedBackgroundMigration.objects.all()
        if options.get("status"):
            migrations = migrations.filter(status=options["status"])
        lines = []
        for migration in migrations:
            remaining = migration.estimated_remaining
            lines.append(
                f"{migration.pk}: {migration.job_class_name} "
                f"{migration.table_name}.{migration.column_name} "
                f"args={migration.job_arguments} status={migration.status} "
                f"progress={migration.progress:.1%} "
                f"cursor={migration.cursor_value if migration.cursor_value is not None else '-'}"
                f"/{migration.max_value} "
                f"remaining~{remaining if remaining is not None else '?'}"
            )
        if not lines:
            self.stdout.write("No batched background migrations")
            return
        self.stdout.write("\n".join(lines))
