from django.db import models


class Job(models.Model):
    class Status(models.TextChoices):
        SPLITTING = "SPLITTING"
        IN_PROGRESS = "IN_PROGRESS"
        MERGING = "MERGING"
        COMPLETE = "COMPLETE"
        FAILED = "FAILED"

    # the submitter's request id doubles as the job id
    id = models.CharField(primary_key=True, max_length=128)
    source_key = models.CharField(max_length=512)     # S3 key of the source asset
    source_duration = models.FloatField(null=True, blank=True)  # seconds
    chunk_duration_seconds = models.FloatField()
    expected_chunk_count = models.PositiveIntegerField(null=True, blank=True)  # set once by the splitter
    completed_chunk_count = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.SPLITTING)
    output_key = models.CharField(max_length=512, blank=True, default="")
    error = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(completed_chunk_count__lte=models.F("expected_chunk_count")),
                name="completed_within_expected",
            ),
        ]

    def __str__(self):
        return f"{self.id} [{self.status}]"

    @property
    def is_active(self) -> bool:
        """Chunks may still be converted and counted."""
        return self.status in ACTIVE_JOB_STATUSES


ACTIVE_JOB_STATUSES = (Job.Status.SPLITTING, Job.Status.IN_PROGRESS)
TERMINAL_JOB_STATUSES = (Job.Status.COMPLETE, Job.Status.FAILED)


class Chunk(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING"
        PROCESSING = "PROCESSING"
        DONE = "DONE"
        FAILED = "FAILED"

    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name="chunks")
    index = models.PositiveIntegerField()   # zero-based; merge order
    start_time = models.FloatField()
    end_time = models.FloatField()
    output_key = models.CharField(max_length=512, blank=True, default="")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    attempts = models.PositiveSmallIntegerField(default=0)
    error = models.TextField(blank=True, default="")

    dispatched_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["job_id", "index"]
        constraints = [
            models.UniqueConstraint(fields=["job", "index"], name="unique_chunk_per_job"),
        ]

    def __str__(self):
        return f"{self.job_id}#{self.index} [{self.status}]"

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time
