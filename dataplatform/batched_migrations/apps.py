from __future__ import annotations

import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class BatchedMigrationsConfig(AppConfig):
    name = "dataplatform.batched_migrations"
    verbose_name = "Batched background migrations"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self) -> None:  # pragma: no cover - executed during app loading
        from .scheduler import flag_enabled, start_trigger

        if not flag_enabled(
            getattr(settings, "ENABLE_BATCHED_MIGRATION_SCHEDULER", False)
        ):
            return
        try:
            start_trigger()
        except Exception:  # pragma: no cover - guard against scheduler startup failures
            logger.exception(
                "Failed to start batched migration trigger from app config")
