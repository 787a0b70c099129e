"""
Splits a source asset into fixed-length time ranges and fans out one
conversion per range.
"""
import logging
import math
import tempfile
from dataclasses import dataclass
from pathlib import Path

from django.conf import settings

from . import gate, queue, store
from .codec import get_codec
from .errors import ObjectNotFound, QueueUnavailable, SourceUnavailable
from .merger import trigger_merge
from .models import Job
from .retry import with_retry
from .s3 import get_object_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkBounds:
    index: int
    start_time: float
    end_time: float


def compute_chunk_bounds(total_duration: float, chunk_duration_seconds: float) -> list[ChunkBounds]:
    """
    ceil(total / chunk) consecutive [start, end) ranges covering the source.
    The last range ends exactly at total_duration and may be shorter.
    """
    if chunk_duration_seconds <= 0:
        raise ValueError("chunk_duration_seconds must be > 0")
    if total_duration <= 0:
        raise ValueError("total_duration must be > 0")

    # 2.1 / 0.7 is 3.0000000000000004 in floats; round before ceil
    count = max(1, math.ceil(round(total_duration / chunk_duration_seconds, 9)))
    bounds = []
    for idx in range(count):
        start = idx * chunk_duration_seconds
        end = total_duration if idx == count - 1 else min((idx + 1) * chunk_duration_seconds, total_duration)
        bounds.append(ChunkBounds(idx, start, end))
    return bounds


def probe_source_duration(source_key: str) -> float:
    """Download the source and ask the codec for its length."""
    object_store = get_object_store()
    with tempfile.TemporaryDirectory(prefix="split-") as workdir:
        local = Path(workdir) / Path(source_key).name
        try:
            object_store.download_to(source_key, local)
        except ObjectNotFound as e:
            raise SourceUnavailable(f"Source {source_key} does not exist") from e
        return get_codec().probe_duration(local)


def split(job_id: str, source_key: str, chunk_duration_seconds: float,
          source_duration: float | None = None, *, resume: bool = False) -> int | None:
    """
    Create the job and its chunks, enqueue one conversion per chunk, and
    move the job to IN_PROGRESS. Returns the expected chunk count.

    One-shot per job id: if the job already exists nothing is written or
    enqueued and the stored count is returned. ``resume`` is only set when
    the same split is retried after an infrastructure error; it picks up a
    job still in SPLITTING and enqueues whatever was not sent yet.
    """
    if chunk_duration_seconds <= 0:
        raise ValueError("chunk_duration_seconds must be > 0")

    job, created = store.create_job_if_absent(job_id, source_key, chunk_duration_seconds, source_duration)
    if not created and not (resume and job.status == Job.Status.SPLITTING):
        logger.info("Job %s already exists (%s); split skipped", job_id, job.status)
        return job.expected_chunk_count

    if job.expected_chunk_count is None:
        try:
            duration = source_duration or probe_source_duration(job.source_key)
            if duration <= 0:
                raise SourceUnavailable(f"Source {job.source_key} has no usable duration", job_id=job_id)
        except SourceUnavailable as e:
            store.fail_job(job_id, f"Source unavailable: {e}")
            raise
        bounds = compute_chunk_bounds(duration, job.chunk_duration_seconds)
        if not store.set_expected_chunk_count(job_id, len(bounds), duration):
            job = store.get_job(job_id)
            if job.status != Job.Status.SPLITTING:
                logger.warning("Job %s left SPLITTING (%s) before its chunks were written", job_id, job.status)
                return job.expected_chunk_count
            # a concurrent resume recorded the count first; follow it
            bounds = compute_chunk_bounds(job.source_duration, job.chunk_duration_seconds)
        logger.info("Job %s: %.3fs split into %d chunks of %.3fs",
                    job_id, duration, len(bounds), job.chunk_duration_seconds)
    else:
        bounds = compute_chunk_bounds(job.source_duration, job.chunk_duration_seconds)

    store.create_chunks(job_id, [(b.start_time, b.end_time) for b in bounds])
    _dispatch_chunks(job_id)

    if not store.transition_job_status(job_id, Job.Status.SPLITTING, Job.Status.IN_PROGRESS):
        # failed in the meantime (e.g. a chunk exhausted its retries)
        logger.warning("Job %s left SPLITTING before dispatch finished", job_id)
        return len(bounds)

    if gate.check_ready(job_id):
        trigger_merge(job_id)
    return len(bounds)


def _dispatch_chunks(job_id: str) -> None:
    """
    Enqueue every chunk not yet dispatched, as a batch. Whatever the broker
    did not take is re-sent with backoff; when it stays down the job is
    failed so the chunk count never silently disagrees with what was sent.
    """
    pending = store.pending_dispatch(job_id)
    while pending:
        try:
            sent = with_retry(
                lambda: queue.enqueue_chunks(job_id, pending),
                retries=settings.JOBS_ENQUEUE_RETRIES,
                backoff_seconds=settings.JOBS_RETRY_BACKOFF_SECONDS,
                retry_on=(QueueUnavailable,),
            )
        except QueueUnavailable as e:
            store.fail_job(job_id, f"Could not enqueue chunk {pending[0]}: {e}")
            raise
        for idx in sent:
            store.mark_chunk_dispatched(job_id, idx)
        pending = pending[len(sent):]
