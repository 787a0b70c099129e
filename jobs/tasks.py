from celery import shared_task
from celery.utils.log import get_task_logger
from django.conf import settings

from . import merger, splitter, store, worker
from .errors import (
    ConversionFailed,
    ObjectStoreUnavailable,
    QueueUnavailable,
    SourceUnavailable,
    StoreUnavailable,
    UnknownChunk,
)
from .retry import backoff_delay

logger = get_task_logger(__name__)


def _retry_or_fail(task, job_id: str, exc: Exception):
    """
    Retry an infrastructure failure with backoff. Once max_retries is used up
    the job is failed with the last error, so it never sits in a working
    state with nobody left to move it.
    """
    retries = task.request.retries
    if retries >= task.max_retries:
        logger.error("Job %s: giving up after %d retries: %s", job_id, retries, exc)
        store.fail_job(job_id, f"Gave up after {retries} retries: {exc}")
        raise exc
    raise task.retry(exc=exc, countdown=backoff_delay(retries, settings.JOBS_RETRY_BACKOFF_SECONDS))


@shared_task(bind=True, max_retries=5)
def split_job(self, job_id: str, source_key: str, chunk_duration_seconds: float,
              source_duration: float | None = None):
    try:
        count = splitter.split(
            job_id, source_key, chunk_duration_seconds, source_duration,
            resume=self.request.retries > 0,
        )
    except (SourceUnavailable, QueueUnavailable) as e:
        # job already FAILED with the reason; nothing to retry
        logger.warning("Split of job %s aborted: %s", job_id, e)
        return {"job_id": job_id, "status": "FAILED"}
    except (StoreUnavailable, ObjectStoreUnavailable) as e:
        _retry_or_fail(self, job_id, e)
    return {"job_id": job_id, "expected_chunk_count": count}


@shared_task(
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
    autoretry_for=(StoreUnavailable,),
    retry_backoff=True,
    max_retries=None,
)
def convert_chunk(self, job_id: str, chunk_index: int):
    try:
        outcome = worker.process_chunk(job_id, chunk_index)
    except UnknownChunk as e:
        logger.error("Dropping work item: %s", e)
        return None
    except ConversionFailed as e:
        # attempts are counted on the chunk row, so redeliveries and retries share one budget
        countdown = backoff_delay(self.request.retries, settings.JOBS_RETRY_BACKOFF_SECONDS)
        logger.warning("Job %s chunk %d: retrying in %.1fs", job_id, chunk_index, countdown)
        raise self.retry(exc=e, countdown=countdown)
    return {
        "job_id": outcome.job_id,
        "chunk_index": outcome.chunk_index,
        "output_key": outcome.output_key,
        "skipped": outcome.skipped,
        "merge_enqueued": outcome.merge_enqueued,
        "job_failed": outcome.job_failed,
    }


@shared_task(bind=True, acks_late=True, reject_on_worker_lost=True, max_retries=5)
def merge_job(self, job_id: str):
    try:
        output_key = merger.merge(job_id)
    except (StoreUnavailable, QueueUnavailable, ObjectStoreUnavailable) as e:
        _retry_or_fail(self, job_id, e)
    return {"job_id": job_id, "output_key": output_key}
