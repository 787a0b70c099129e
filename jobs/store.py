"""
Job/chunk state access.

Every mutation here is a single conditional UPDATE (``filter(...).update(...)``)
whose affected-row count says whether the precondition held. Nothing does a
read-modify-write across round trips and nothing takes an in-process lock:
workers run in separate processes and machines.
"""
import functools
import logging
from typing import Iterable

from django.db import IntegrityError, InterfaceError, OperationalError, transaction
from django.db.models import F
from django.utils import timezone

from .errors import ConditionalWriteConflict, StoreUnavailable
from .models import ACTIVE_JOB_STATUSES, TERMINAL_JOB_STATUSES, Chunk, Job

logger = logging.getLogger(__name__)

ERROR_MAX_CHARS = 4000


def _store_call(fn):
    """Translate database connectivity errors into StoreUnavailable."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailable(f"{fn.__name__}: {exc}") from exc

    return wrapper


# -----------------------------------------------------
# Reads
# -----------------------------------------------------
@_store_call
def get_job(job_id: str) -> Job | None:
    return Job.objects.filter(pk=job_id).first()


@_store_call
def get_job_status(job_id: str) -> str | None:
    return Job.objects.filter(pk=job_id).values_list("status", flat=True).first()


@_store_call
def get_chunk(job_id: str, chunk_index: int) -> Chunk | None:
    return Chunk.objects.filter(job_id=job_id, index=chunk_index).first()


@_store_call
def list_chunks(job_id: str) -> list[Chunk]:
    """All chunks of a job, in merge order."""
    return list(Chunk.objects.filter(job_id=job_id).order_by("index"))


@_store_call
def pending_dispatch(job_id: str) -> list[int]:
    """Indexes of chunks whose work item has not been enqueued yet."""
    return list(
        Chunk.objects.filter(job_id=job_id, dispatched_at__isnull=True)
        .order_by("index")
        .values_list("index", flat=True)
    )


# -----------------------------------------------------
# Job writes
# -----------------------------------------------------
@_store_call
def create_job_if_absent(
    job_id: str,
    source_key: str,
    chunk_duration_seconds: float,
    source_duration: float | None = None,
) -> tuple[Job, bool]:
    """Create the job in SPLITTING unless a job with this id already exists."""
    try:
        with transaction.atomic():
            job, created = Job.objects.get_or_create(
                pk=job_id,
                defaults={
                    "source_key": source_key,
                    "chunk_duration_seconds": chunk_duration_seconds,
                    "source_duration": source_duration,
                    "status": Job.Status.SPLITTING,
                },
            )
    except IntegrityError:
        # lost the insert race to a concurrent create
        return Job.objects.get(pk=job_id), False
    return job, created


@_store_call
def set_expected_chunk_count(job_id: str, count: int, source_duration: float) -> bool:
    """Record the chunk count; only the first caller wins, after that it is immutable."""
    updated = Job.objects.filter(
        pk=job_id,
        status=Job.Status.SPLITTING,
        expected_chunk_count__isnull=True,
    ).update(
        expected_chunk_count=count,
        source_duration=source_duration,
        updated_at=timezone.now(),
    )
    return updated == 1


@_store_call
def increment_completed_count(job_id: str) -> tuple[int, int]:
    """
    Atomically add one completed chunk and return (new_count, expected_count).

    The guard ``completed < expected`` plus an active status is evaluated by the
    database inside the UPDATE. The row stays locked until the surrounding
    transaction commits, so the values read back are exactly ours.
    Raises ConditionalWriteConflict when the guard fails.
    """
    with transaction.atomic():
        updated = Job.objects.filter(
            pk=job_id,
            status__in=ACTIVE_JOB_STATUSES,
            completed_chunk_count__lt=F("expected_chunk_count"),
        ).update(
            completed_chunk_count=F("completed_chunk_count") + 1,
            updated_at=timezone.now(),
        )
        if updated != 1:
            raise ConditionalWriteConflict(
                f"Completed count for job {job_id} not incremented", job_id=job_id
            )
        new_count, expected = Job.objects.filter(pk=job_id).values_list(
            "completed_chunk_count", "expected_chunk_count"
        ).get()
    return new_count, expected


@_store_call
def transition_job_status(job_id: str, from_status: str, to_status: str, **fields) -> bool:
    """Compare-and-swap on job status. True only for the caller that moved it."""
    updated = Job.objects.filter(pk=job_id, status=from_status).update(
        status=to_status, updated_at=timezone.now(), **fields
    )
    if updated:
        logger.info("Job %s: %s -> %s", job_id, from_status, to_status)
    return updated == 1


@_store_call
def fail_job(job_id: str, reason: str) -> bool:
    """Move a non-terminal job to FAILED, recording why. COMPLETE jobs are left alone."""
    updated = (
        Job.objects.filter(pk=job_id)
        .exclude(status__in=TERMINAL_JOB_STATUSES)
        .update(status=Job.Status.FAILED, error=reason[:ERROR_MAX_CHARS], updated_at=timezone.now())
    )
    if updated:
        logger.warning("Job %s failed: %s", job_id, reason)
    return updated == 1


# -----------------------------------------------------
# Chunk writes
# -----------------------------------------------------
@_store_call
def create_chunks(job_id: str, bounds: Iterable[tuple[float, float]]) -> int:
    """Insert one PENDING chunk per (start, end); rows that already exist are kept."""
    rows = [
        Chunk(job_id=job_id, index=idx, start_time=start, end_time=end)
        for idx, (start, end) in enumerate(bounds)
    ]
    Chunk.objects.bulk_create(rows, ignore_conflicts=True)
    return len(rows)


@_store_call
def mark_chunk_dispatched(job_id: str, chunk_index: int) -> bool:
    updated = Chunk.objects.filter(
        job_id=job_id, index=chunk_index, dispatched_at__isnull=True
    ).update(dispatched_at=timezone.now())
    return updated == 1


@_store_call
def mark_chunk_processing(job_id: str, chunk_index: int, max_attempts: int) -> bool:
    """
    Claim a chunk for conversion and count the attempt.

    Allowed from PENDING, PROCESSING (redelivery after a crash) and FAILED
    (queue retry), as long as attempts remain. Never from DONE.
    """
    updated = Chunk.objects.filter(
        job_id=job_id,
        index=chunk_index,
        status__in=(Chunk.Status.PENDING, Chunk.Status.PROCESSING, Chunk.Status.FAILED),
        attempts__lt=max_attempts,
    ).update(
        status=Chunk.Status.PROCESSING,
        attempts=F("attempts") + 1,
        updated_at=timezone.now(),
    )
    return updated == 1


@_store_call
def mark_chunk_failed(job_id: str, chunk_index: int, reason: str) -> int:
    """Record a failed attempt; returns the number of attempts made so far."""
    Chunk.objects.filter(
        job_id=job_id, index=chunk_index, status=Chunk.Status.PROCESSING
    ).update(
        status=Chunk.Status.FAILED,
        error=reason[:ERROR_MAX_CHARS],
        updated_at=timezone.now(),
    )
    return Chunk.objects.filter(job_id=job_id, index=chunk_index).values_list(
        "attempts", flat=True
    ).get()


@_store_call
def mark_chunk_done(job_id: str, chunk_index: int, output_key: str | None = None) -> bool:
    """
    Transition a chunk to DONE. Returns True when it was already DONE,
    i.e. this call changed nothing.
    """
    now = timezone.now()
    fields = {"status": Chunk.Status.DONE, "completed_at": now, "updated_at": now, "error": ""}
    if output_key:
        fields["output_key"] = output_key
    updated = (
        Chunk.objects.filter(job_id=job_id, index=chunk_index)
        .exclude(status=Chunk.Status.DONE)
        .update(**fields)
    )
    return updated == 0
