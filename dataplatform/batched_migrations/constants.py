"""Defaults shared by the enqueue path, the runner and the models."""

from __future__ import annotations

from datetime import timedelta

BATCH_SIZE = 1_000  # rows per job
SUB_BATCH_SIZE = 100  # rows per sub-batch inside a job
BATCH_MIN_VALUE = 1
BATCH_MIN_DELAY = timedelta(minutes=2)
DEFAULT_BATCH_STRATEGY = "primary_key"
DEFAULT_SCHEMA_TAG = "main"

# Failed attempts tolerated for one range before the migration is failed.
MAX_ATTEMPTS = 3

# A running batch older than this many intervals is treated as abandoned.
STUCK_AFTER_INTERVALS = 10
