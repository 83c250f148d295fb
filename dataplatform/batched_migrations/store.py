"""Raw queries against the tables that migrations batch over."""

from __future__ import annotations

import logging
from typing import Mapping

from django.conf import settings
from django.db import DEFAULT_DB_ALIAS, DatabaseError, connections, transaction

from . import constants
from .exceptions import ConfigurationError, TransactionOpenError

logger = logging.getLogger(__name__)


def database_for_schema(schema_tag: str | None) -> str:
    """Return the database alias that hosts tables tagged ``schema_tag``."""
    mapping: Mapping[str, str] = getattr(
        settings,
        "BATCHED_MIGRATIONS_SCHEMA_DATABASES",
        {constants.DEFAULT_SCHEMA_TAG: DEFAULT_DB_ALIAS},
    )
    tag = schema_tag or constants.DEFAULT_SCHEMA_TAG
    try:
        alias = mapping[tag]
    except KeyError as exc:
        raise ConfigurationError(
            f"Unknown schema tag {tag!r}; expected one of {sorted(mapping)}"
        ) from exc
    if alias not in settings.DATABASES:
        raise ConfigurationError(
            f"Schema tag {tag!r} maps to unknown database {alias!r}")
    return alias


def require_no_open_transaction(operation: str, using: str = DEFAULT_DB_ALIAS) -> None:
    if transaction.get_connection(using).in_atomic_block:
        raise TransactionOpenError(operation)


def max_column_value(table: str, column: str, using: str = DEFAULT_DB_ALIAS) -> int | None:
    connection = connections[using]
    quote = connection.ops.quote_name
    with connection.cursor() as cursor:
        cursor.execute(f"SELECT MAX({quote(column)}) FROM {quote(table)}")
        row = cursor.fetchone()
    return None if row is None or row[0] is None else int(row[0])


def cardinality_estimate(table: str, using: str = DEFAULT_DB_ALIAS) -> int | None:
    """Best-effort row estimate for ``table``; ``None`` when unavailable."""
    connection = connections[using]
    if connection.vendor == "postgresql":
        sql = "SELECT reltuples::bigint FROM pg_class WHERE relname = %s"
        params: list[str] = [table]
    else:
        sql = f"SELECT COUNT(*) FROM {connection.ops.quote_name(table)}"
        params = []
    try:
        with transaction.atomic(using=using):
            with connection.cursor() as cursor:
                cursor.execute(sql, params)
                row = cursor.fetchone()
    except DatabaseError:
        logger.warning(
            "Could not estimate cardinality of %s on %s", table, using, exc_info=True
        )
        return None
    if row is None or row[0] is None or row[0] < 0:
        return None
    return int(row[0])
