from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable

from django.conf import settings

from . import constants
from .finalizer import BatchedMigrationFinalizer
from .health import HealthGate
from .jobs import JobRegistry
from .registry import MigrationRegistry
from .runner import BatchRunner
from .scheduler import BatchedMigrationScheduler, flag_enabled


def create_registry(
    jobs: JobRegistry | None = None,
    *,
    clock: Callable[[], Any] | None = None,
) -> MigrationRegistry:
    return MigrationRegistry(jobs=jobs, clock=clock)


def create_runner(
    jobs: JobRegistry | None = None,
    *,
    clock: Callable[[], Any] | None = None,
) -> BatchRunner:
    """Factory for BatchRunner instances configured from settings."""
    max_attempts = getattr(
        settings, "BATCHED_MIGRATIONS_MAX_ATTEMPTS", constants.MAX_ATTEMPTS)
    stuck_after = getattr(settings, "BATCHED_MIGRATIONS_STUCK_AFTER_SECONDS", None)
    return BatchRunner(
        jobs=jobs,
        max_attempts=max_attempts,
        clock=clock,
        stuck_after=timedelta(seconds=stuck_after) if stuck_after else None,
    )


def create_scheduler(
    jobs: JobRegistry | None = None,
    *,
    clock: Callable[[], Any] | None = None,
) -> BatchedMigrationScheduler:
    return BatchedMigrationScheduler(create_runner(jobs, clock=clock))


def create_finalizer(
    jobs: JobRegistry | None = None,
    *,
    clock: Callable[[], Any] | None = None,
) -> BatchedMigrationFinalizer:
    return BatchedMigrationFinalizer(
        create_runner(jobs, clock=clock),
        create_registry(jobs, clock=clock),
    )


def create_health_gate(
    jobs: JobRegistry | None = None,
    *,
    strict: bool | None = None,
    clock: Callable[[], Any] | None = None,
) -> HealthGate:
    if strict is None:
        strict = flag_enabled(
            getattr(settings, "BATCHED_MIGRATIONS_STRICT", False))
    return HealthGate(
        create_finalizer(jobs, clock=clock),
        create_registry(jobs, clock=clock),
        strict=strict,
    )
