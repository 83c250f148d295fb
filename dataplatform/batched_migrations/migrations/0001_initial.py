import datetime

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="BatchedBackgroundMigration",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("job_class_name", models.CharField(max_length=120)),
                ("table_name", models.CharField(max_length=120)),
                ("column_name", models.CharField(max_length=120)),
                ("job_arguments", models.JSONField(blank=True, default=list)),
                (
                    "identity_digest",
                    models.CharField(editable=False, max_length=64, unique=True),
                ),
                ("schema_tag", models.CharField(default="main", max_length=64)),
                (
                    "queued_migration_version",
                    models.CharField(blank=True, max_length=32, null=True),
                ),
                ("min_value", models.BigIntegerField(default=1)),
                ("max_value", models.BigIntegerField()),
                ("cursor_value", models.BigIntegerField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("paused", "Paused"),
                            ("finished", "Finished"),
                            ("failed", "Failed"),
                        ],
                        default="active",
                        max_length=16,
                    ),
                ),
                ("batch_size", models.PositiveIntegerField(default=1000)),
                ("sub_batch_size", models.PositiveIntegerField(default=100)),
                ("max_batch_size", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "interval",
                    models.DurationField(default=datetime.timedelta(minutes=2)),
                ),
                (
                    "batch_strategy_name",
                    models.CharField(default="primary_key", max_length=64),
                ),
                ("total_tuple_count", models.BigIntegerField(blank=True, null=True)),
                (
                    "created_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["id"],
                "indexes": [
                    models.Index(
                        fields=["status", "id"],
                        name="batched_migration_status_idx",
                    )
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(min_value__lte=models.F("max_value")),
                        name="batched_migration_min_lte_max",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(batch_size__gte=1),
                        name="batched_migration_batch_size_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(sub_batch_size__gte=1),
                        name="batched_migration_sub_batch_size_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            sub_batch_size__lte=models.F("batch_size")),
                        name="batched_migration_sub_batch_lte_batch",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BatchedBackgroundMigrationJob",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("min_value", models.BigIntegerField()),
                ("max_value", models.BigIntegerField()),
                ("batch_size", models.PositiveIntegerField()),
                ("sub_batch_size", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("running", "Running"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                ("duration_seconds", models.FloatField(blank=True, null=True)),
                ("rows_processed", models.BigIntegerField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "migration",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="jobs",
                        to="batched_migrations.batchedbackgroundmigration",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(min_value__lte=models.F("max_value")),
                        name="batched_migration_job_min_lte_max",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(status="running"),
                        fields=("migration",),
                        name="batched_migration_single_running_job",
                    ),
                ],
            },
        ),
    ]
