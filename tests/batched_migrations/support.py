from __future__ import annotations

from datetime import timedelta

from django.db import connection
from django.utils import timezone


class FakeClock:
    """Manually advanced replacement for ``timezone.now``."""

    def __init__(self, start=None) -> None:
        self.current = start or timezone.now()

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


def create_widgets_table(name: str = "widgets", ids=()) -> None:
    with connection.cursor() as cursor:
        cursor.execute(
            f"CREATE TABLE {name} (id INTEGER PRIMARY KEY, name TEXT, name_copy TEXT)"
        )
        for pk in ids:
            cursor.execute(
                f"INSERT INTO {name} (id, name) VALUES (%s, %s)", [pk, f"widget-{pk}"]
            )


def drop_table(name: str = "widgets") -> None:
    with connection.cursor() as cursor:
        cursor.execute(f"DROP TABLE IF EXISTS {name}")
