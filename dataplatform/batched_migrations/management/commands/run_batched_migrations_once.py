from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from ...factory import create_scheduler
from ...runner import BatchOutcome


class Command(BaseCommand):
    help = "Run one scheduler tick: execute the next batch of due migrations."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--limit",
            type=int,
            default=1,
            help="Maximum number of migrations to advance (defaults to 1)",
        )

    def handle(self, *args, **options):  # type: ignore[override]
        outcomes = create_scheduler().tick(limit=options["limit"])
        if not outcomes:
            self.stdout.write("No batched migrations are due")
            return
        formatted = []
        failed = []
        for outcome in outcomes:
            batch = (
                f"[{outcome.batch[0]}, {outcome.batch[1]}]"
                if outcome.batch is not None
                else "-"
            )
            formatted.append(
                f"{outcome.migration_id}: status={outcome.status}, batch={batch}, "
                f"attempt={outcome.attempts}, migration={outcome.migration_status}"
            )
            if outcome.status == BatchOutcome.FAILED:
                failed.append(str(outcome.migration_id))
        self.stdout.write("\n".join(formatted))
        if failed:
            raise CommandError(f"Batches failed for migrations: {', '.join(failed)}")
