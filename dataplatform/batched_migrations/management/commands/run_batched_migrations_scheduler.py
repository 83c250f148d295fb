from __future__ import annotations

from django.conf import settings
from django.core.management.base import BaseCommand

from ...models import BatchedBackgroundMigration
from ...scheduler import ensure_trigger, flag_enabled, start_trigger


class Command(BaseCommand):
    help = "Start the in-process trigger that ticks batched migrations."

    def handle(self, *args, **options):  # type: ignore[override]
        trigger = ensure_trigger()
        flag = getattr(settings, "ENABLE_BATCHED_MIGRATION_SCHEDULER", False)
        if not flag_enabled(flag):
            self.stdout.write(
                self.style.WARNING(
                    "ENABLE_BATCHED_MIGRATION_SCHEDULER is not enabled; running trigger on-demand."
                )
            )
        active = BatchedBackgroundMigration.objects.filter(
            status=BatchedBackgroundMigration.Status.ACTIVE
        ).count()
        start_trigger()
        self.stdout.write(
            self.style.SUCCESS(
                f"Batched migration trigger ticking every "
                f"{int(trigger.every.total_seconds())}s ({active} active migrations)"
            )
        )
        try:
            trigger.wait_forever()
        except KeyboardInterrupt:
            trigger.shutdown()
            self.stdout.write(self.style.WARNING("Trigger stopped"))
