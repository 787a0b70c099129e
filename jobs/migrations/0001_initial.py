import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Job",
            fields=[
                ("id", models.CharField(max_length=128, primary_key=True, serialize=False)),
                ("source_key", models.CharField(max_length=512)),
                ("source_duration", models.FloatField(blank=True, null=True)),
                ("chunk_duration_seconds", models.FloatField()),
                ("expected_chunk_count", models.PositiveIntegerField(blank=True, null=True)),
                ("completed_chunk_count", models.PositiveIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("SPLITTING", "Splitting"),
                            ("IN_PROGRESS", "In Progress"),
                            ("MERGING", "Merging"),
                            ("COMPLETE", "Complete"),
                            ("FAILED", "Failed"),
                        ],
                        default="SPLITTING",
                        max_length=16,
                    ),
                ),
                ("output_key", models.CharField(blank=True, default="", max_length=512)),
                ("error", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("completed_chunk_count__lte", models.F("expected_chunk_count"))),
                        name="completed_within_expected",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Chunk",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("index", models.PositiveIntegerField()),
                ("start_time", models.FloatField()),
                ("end_time", models.FloatField()),
                ("output_key", models.CharField(blank=True, default="", max_length=512)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("PROCESSING", "Processing"),
                            ("DONE", "Done"),
                            ("FAILED", "Failed"),
                        ],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("attempts", models.PositiveSmallIntegerField(default=0)),
                ("error", models.TextField(blank=True, default="")),
                ("dispatched_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="chunks",
                        to="jobs.job",
                    ),
                ),
            ],
            options={
                "ordering": ["job_id", "index"],
                "constraints": [
                    models.UniqueConstraint(fields=("job", "index"), name="unique_chunk_per_job")
                ],
            },
        ),
    ]
