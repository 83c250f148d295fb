from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Iterator, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from django.conf import settings
from django.db import close_old_connections

from .models import BatchedBackgroundMigration, BatchedBackgroundMigrationJob
from .runner import BatchOutcome, BatchRunner

logger = logging.getLogger(__name__)

_trigger_lock = threading.Lock()
_trigger: Optional["BatchedMigrationTrigger"] = None


class BatchedMigrationScheduler:
    """Run due batches for active migrations, honouring each interval."""

    def __init__(self, runner: BatchRunner) -> None:
        self._runner = runner

    def next_run_at(self, migration: BatchedBackgroundMigration):
        """
        Earliest time the next batch may start.

        While a batch is running this is the moment it would be considered
        abandoned and reclaimed.
        """
        last = migration.jobs.order_by("-id").first()
        if last is None:
            return migration.created_at + migration.interval
        if last.status == BatchedBackgroundMigrationJob.Status.RUNNING:
            return self._runner.stuck_deadline(migration, last)
        reference = last.started_at or last.created_at
        wait = migration.interval
        if last.status == BatchedBackgroundMigrationJob.Status.FAILED:
            wait = migration.interval * (2 ** max(last.attempts - 1, 0))
        return reference + wait

    def is_due(self, migration: BatchedBackgroundMigration, now) -> bool:
        next_run = self.next_run_at(migration)
        return next_run is not None and now >= next_run

    def due_migrations(self, now) -> Iterator[BatchedBackgroundMigration]:
        active = BatchedBackgroundMigration.objects.filter(
            status=BatchedBackgroundMigration.Status.ACTIVE
        ).order_by("id")
        for migration in active:
            if self.is_due(migration, now):
                yield migration
            else:
                logger.debug(
                    "Skipping migration %s; interval has not elapsed", migration.pk)

    def tick(self, limit: int = 1) -> list[BatchOutcome]:
        """Execute one batch for up to ``limit`` due migrations."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        now = self._runner.now()
        outcomes: list[BatchOutcome] = []
        for migration in list(self.due_migrations(now)):
            outcome = self._runner.run_next_batch(migration)
            if outcome.status in {BatchOutcome.SKIPPED, BatchOutcome.BUSY}:
                continue
            outcomes.append(outcome)
            if len(outcomes) >= limit:
                break
        return outcomes


def flag_enabled(flag) -> bool:
    if isinstance(flag, str):
        return flag.strip().lower() in {"1", "true", "yes", "on"}
    return bool(flag)


def start_trigger() -> "BatchedMigrationTrigger":
    trigger = ensure_trigger()
    trigger.start()
    return trigger


def ensure_trigger() -> "BatchedMigrationTrigger":
    global _trigger
    with _trigger_lock:
        if _trigger is None:
            from .factory import create_scheduler

            seconds = getattr(settings, "BATCHED_MIGRATIONS_TICK_SECONDS", 60)
            _trigger = BatchedMigrationTrigger(
                create_scheduler(), every=timedelta(seconds=seconds)
            )
        return _trigger


def shutdown_trigger() -> None:
    global _trigger
    with _trigger_lock:
        if _trigger is not None:
            _trigger.shutdown()
            _trigger = None


class BatchedMigrationTrigger:
    """APScheduler wrapper that ticks the migration scheduler periodically."""

    def __init__(
        self,
        scheduler: BatchedMigrationScheduler,
        *,
        every: timedelta = timedelta(minutes=1),
        limit: int = 1,
    ) -> None:
        self._scheduler = scheduler
        self._every = every
        self._limit = limit
        self._background = BackgroundScheduler(timezone="UTC")
        self._started = False
        self._lock = threading.Lock()

    @property
    def every(self) -> timedelta:
        return self._every

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._background.add_job(
                self.run_now,
                trigger=IntervalTrigger(seconds=self._every.total_seconds()),
                id="batched-migrations-tick",
                max_instances=1,
                coalesce=True,
            )
            self._background.start()
            self._started = True
            logger.info("Batched migration trigger started (every %s)", self._every)

    def shutdown(self) -> None:
        with self._lock:
            if not self._started:
                return
            self._background.shutdown(wait=False)
            self._started = False
            logger.info("Batched migration trigger stopped")

    def wait_forever(self) -> None:
        while True:  # pragma: no cover - interactive loop
            time.sleep(60)

    def run_now(self) -> list[BatchOutcome]:
        try:
            outcomes = self._scheduler.tick(limit=self._limit)
        finally:
            close_old_connections()
        if outcomes:
            summary = {
                outcome.migration_id: {
                    "status": outcome.status,
                    "batch": outcome.batch,
                    "attempt": outcome.attempts,
                }
                for outcome in outcomes
            }
            logger.info("Batched migration tick completed: %s", summary)
        return outcomes
