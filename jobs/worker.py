"""
Converts one chunk. Invoked at least once per chunk by the queue, in any
order, possibly concurrently with redeliveries of itself.
"""
import logging
import tempfile
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from django.conf import settings
from django.utils import timezone

from . import gate, store
from .codec import get_codec
from .errors import ConversionFailed, ObjectNotFound, ObjectStoreUnavailable, UnknownChunk
from .merger import trigger_merge
from .models import ACTIVE_JOB_STATUSES, Chunk
from .s3 import get_object_store

logger = logging.getLogger(__name__)


@dataclass
class ChunkOutcome:
    job_id: str
    chunk_index: int
    output_key: str = ""
    skipped: bool = False
    merge_enqueued: bool = False
    job_failed: bool = False


def chunk_output_key(job_id: str, chunk_index: int, extension: str) -> str:
    # fixed per chunk, so a redelivered conversion overwrites rather than duplicates
    return f"chunks/{job_id}/chunk_{chunk_index:05d}.{extension}"


def process_chunk(job_id: str, chunk_index: int) -> ChunkOutcome:
    """
    Convert chunk ``chunk_index`` of ``job_id`` and report it to the
    completion gate. Raises ConversionFailed while retries remain.
    """
    chunk = store.get_chunk(job_id, chunk_index)
    if chunk is None:
        raise UnknownChunk(job_id, chunk_index)

    if store.get_job_status(job_id) not in ACTIVE_JOB_STATUSES:
        logger.info("Job %s is no longer active; chunk %d skipped", job_id, chunk_index)
        return ChunkOutcome(job_id, chunk_index, output_key=chunk.output_key, skipped=True)

    if chunk.status == Chunk.Status.DONE:
        logger.info("Job %s chunk %d already converted; re-confirming", job_id, chunk_index)
        return _report(ChunkOutcome(job_id, chunk_index, output_key=chunk.output_key, skipped=True))

    max_attempts = settings.JOBS_CHUNK_MAX_ATTEMPTS
    if not store.mark_chunk_processing(job_id, chunk_index, max_attempts):
        chunk = store.get_chunk(job_id, chunk_index)
        if chunk.status == Chunk.Status.DONE:
            return _report(ChunkOutcome(job_id, chunk_index, output_key=chunk.output_key, skipped=True))
        if chunk.status == Chunk.Status.PROCESSING and not _claim_is_stale(chunk):
            # the final attempt is still running elsewhere; it reports or fails the job itself
            logger.info("Job %s chunk %d: last attempt in flight; duplicate delivery dropped", job_id, chunk_index)
            return ChunkOutcome(job_id, chunk_index, skipped=True)
        # attempts used up by earlier deliveries, or the last one died mid-conversion
        store.fail_job(job_id, f"Chunk {chunk_index} failed {chunk.attempts} times: {chunk.error}")
        return ChunkOutcome(job_id, chunk_index, skipped=True, job_failed=True)

    job = store.get_job(job_id)
    codec = get_codec()
    try:
        output_key = _convert(job.source_key, chunk, codec)
    except ConversionFailed as e:
        e.job_id, e.chunk_index = job_id, chunk_index
        attempts = store.mark_chunk_failed(job_id, chunk_index, e.message)
        logger.warning("Job %s chunk %d conversion failed (attempt %d/%d)", job_id, chunk_index, attempts, max_attempts)
        if attempts >= max_attempts:
            store.fail_job(job_id, f"Chunk {chunk_index} failed {attempts} times: {e.message}")
            return ChunkOutcome(job_id, chunk_index, job_failed=True)
        raise

    # cooperative cancellation: the job may have failed while we converted
    if store.get_job_status(job_id) not in ACTIVE_JOB_STATUSES:
        logger.info("Job %s stopped while chunk %d converted; not reporting", job_id, chunk_index)
        return ChunkOutcome(job_id, chunk_index, output_key=output_key, skipped=True)

    return _report(ChunkOutcome(job_id, chunk_index, output_key=output_key))


def _claim_is_stale(chunk: Chunk) -> bool:
    age = timezone.now() - chunk.updated_at
    return age > timedelta(seconds=settings.JOBS_CHUNK_STALE_SECONDS)


def _convert(source_key: str, chunk: Chunk, codec) -> str:
    """
    Every failure in here counts against the chunk's attempts: codec errors,
    object store outages and local disk errors alike.
    """
    try:
        return _convert_once(source_key, chunk, codec)
    except ObjectNotFound as e:
        raise ConversionFailed(f"Source {source_key} disappeared") from e
    except (ObjectStoreUnavailable, OSError) as e:
        raise ConversionFailed(f"{type(e).__name__}: {e}") from e


def _convert_once(source_key: str, chunk: Chunk, codec) -> str:
    object_store = get_object_store()
    with tempfile.TemporaryDirectory(prefix="chunk-") as workdir:
        workdir = Path(workdir)
        source = workdir / f"source{Path(source_key).suffix}"
        object_store.download_to(source_key, source)

        converted = workdir / f"chunk_{chunk.index:05d}.{codec.extension}"
        codec.convert(source, chunk.start_time, chunk.end_time, converted)

        output_key = chunk_output_key(chunk.job_id, chunk.index, codec.extension)
        object_store.put(
            output_key,
            converted.read_bytes(),
            content_type=codec.content_type,
            metadata={"job-id": chunk.job_id, "chunk-index": chunk.index, "start-time": chunk.start_time},
        )
    return output_key


def _report(outcome: ChunkOutcome) -> ChunkOutcome:
    if gate.on_chunk_complete(outcome.job_id, outcome.chunk_index, outcome.output_key or None):
        trigger_merge(outcome.job_id)
        outcome.merge_enqueued = True
    return outcome
