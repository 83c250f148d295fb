"""Adaptive batch sizing driven by how much of the interval each job uses."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import BatchedBackgroundMigration, BatchedBackgroundMigrationJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchSizeOptimizer:
    """
    Nudges ``batch_size`` so recent jobs take 90-95% of the interval.

    Only migrations with a ``max_batch_size`` are optimized. The result never
    drops below ``sub_batch_size`` nor exceeds ``max_batch_size``, and a
    single adjustment changes the size by at most ``max_multiplier``.
    """

    target_low: float = 0.90
    target_high: float = 0.95
    max_multiplier: float = 1.2
    window: int = 20

    def time_efficiency(self, migration: BatchedBackgroundMigration) -> float | None:
        interval = migration.interval.total_seconds()
        if interval <= 0:
            return None
        durations = list(
            migration.jobs.filter(
                status=BatchedBackgroundMigrationJob.Status.SUCCEEDED,
                duration_seconds__isnull=False,
            )
            .order_by("-id")
            .values_list("duration_seconds", flat=True)[: self.window]
        )
        if not durations:
            return None
        return (sum(durations) / len(durations)) / interval

    def optimize(self, migration: BatchedBackgroundMigration) -> bool:
        """Adjust ``migration.batch_size`` in memory; return whether it changed."""
        if migration.max_batch_size is None:
            return False
        efficiency = self.time_efficiency(migration)
        if efficiency is None:
            return False
        if self.target_low <= efficiency <= self.target_high:
            return False
        if efficiency <= 0:
            multiplier = self.max_multiplier
        else:
            multiplier = min(self.target_high / efficiency, self.max_multiplier)
        proposed = int(migration.batch_size * multiplier)
        proposed = max(migration.sub_batch_size,
                       min(proposed, migration.max_batch_size))
        if proposed == migration.batch_size:
            return False
        logger.info(
            "Batch size for migration %s: %s -> %s (efficiency %.2f)",
            migration.pk,
            migration.batch_size,
            proposed,
            efficiency,
        )
        migration.batch_size = proposed
        return True
