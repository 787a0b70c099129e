"""
Reassembles converted chunks, in index order, into the job's final output.
"""
import logging
import tempfile
from pathlib import Path

from django.conf import settings

from . import queue, store
from .codec import get_codec
from .errors import IncompleteJob, ObjectStoreUnavailable, QueueUnavailable, StoreUnavailable
from .models import Chunk, Job
from .retry import with_retry
from .s3 import get_object_store

logger = logging.getLogger(__name__)


def merged_output_key(job: Job, extension: str) -> str:
    return f"outputs/{job.id}/{Path(job.source_key).stem}_merged.{extension}"


def _missing_chunks(job: Job, chunks: list[Chunk]) -> list[int]:
    present = {c.index for c in chunks if c.status == Chunk.Status.DONE and c.output_key}
    return [idx for idx in range(job.expected_chunk_count or 0) if idx not in present]


def merge(job_id: str) -> str | None:
    """
    Merge a job that holds the MERGING state. Returns the output key, or
    None when the job is not MERGING (a redelivered merge task).

    On any failure the job is FAILED, chunk outputs are left in place and
    the error is re-raised.
    """
    job = store.get_job(job_id)
    if job is None or job.status != Job.Status.MERGING:
        logger.info("Job %s is not MERGING (%s); merge skipped", job_id, job.status if job else "missing")
        return None

    try:
        chunks = store.list_chunks(job_id)
        missing = _missing_chunks(job, chunks)
        if missing or not chunks:
            raise IncompleteJob(job_id, missing)

        codec = get_codec()
        object_store = get_object_store()
        output_key = merged_output_key(job, codec.extension)
        with tempfile.TemporaryDirectory(prefix="merge-") as workdir:
            workdir = Path(workdir)
            parts = []
            for chunk in chunks:
                part = workdir / f"part_{chunk.index:05d}.{codec.extension}"
                object_store.download_to(chunk.output_key, part)
                parts.append(part)
            merged = codec.concat(parts, workdir / f"merged.{codec.extension}")
            object_store.put(
                output_key,
                merged.read_bytes(),
                content_type=codec.content_type,
                metadata={"job-id": job_id, "chunk-count": len(parts)},
            )
    except (StoreUnavailable, QueueUnavailable, ObjectStoreUnavailable):
        # job stays MERGING; the merge task retries with backoff
        raise
    except Exception as e:
        store.fail_job(job_id, f"Merge failed: {e}")
        raise

    if not store.transition_job_status(job_id, Job.Status.MERGING, Job.Status.COMPLETE, output_key=output_key):
        logger.warning("Job %s left MERGING while merging; output %s kept", job_id, output_key)
        return None
    logger.info("Job %s complete: %d chunks merged into %s", job_id, len(chunks), output_key)
    return output_key


def retry_merge(job_id: str) -> bool:
    """
    Re-run the merge of a FAILED job whose chunks all converted. Nothing is
    re-converted. Returns False when the job is not eligible.
    """
    job = store.get_job(job_id)
    if job is None or job.status != Job.Status.FAILED:
        return False
    if _missing_chunks(job, store.list_chunks(job_id)):
        logger.info("Job %s has unconverted chunks; merge retry refused", job_id)
        return False
    if not store.transition_job_status(job_id, Job.Status.FAILED, Job.Status.MERGING, error=""):
        return False
    trigger_merge(job_id)
    return True


def trigger_merge(job_id: str) -> None:
    """
    Enqueue the merge for a job that just won the MERGING gate. If the
    broker stays unreachable the job is failed; retry_merge can recover it.
    """
    try:
        with_retry(
            lambda: queue.enqueue_merge(job_id),
            retries=settings.JOBS_ENQUEUE_RETRIES,
            backoff_seconds=settings.JOBS_RETRY_BACKOFF_SECONDS,
            retry_on=(QueueUnavailable,),
        )
    except QueueUnavailable as e:
        store.fail_job(job_id, f"Could not enqueue merge: {e}")
        raise
