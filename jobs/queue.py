"""
Producer side of the work queue.

Messages are sent by task name so this module never imports the task
module (which imports the splitter and worker, which import this).
Delivery is at-least-once and unordered; consumers must be idempotent.
"""
import logging

from kombu.exceptions import OperationalError

from chunkflow.celery import celery_app

from .errors import QueueUnavailable

logger = logging.getLogger(__name__)

SPLIT_TASK = "jobs.tasks.split_job"
CONVERT_CHUNK_TASK = "jobs.tasks.convert_chunk"
MERGE_TASK = "jobs.tasks.merge_job"


def _send(task_name: str, args: list, job_id: str):
    try:
        return celery_app.send_task(task_name, args=args)
    except OperationalError as exc:
        raise QueueUnavailable(f"Could not enqueue {task_name}: {exc}", job_id=job_id) from exc


def enqueue_split(job_id: str, source_key: str, chunk_duration_seconds: float,
                  source_duration: float | None = None):
    return _send(SPLIT_TASK, [job_id, source_key, chunk_duration_seconds, source_duration], job_id)


def enqueue_chunks(job_id: str, chunk_indexes: list[int]) -> list[int]:
    """
    Send one convert message per index over a single producer connection.

    Returns the indexes sent before the broker failed, in order. Raises
    QueueUnavailable only when not even the first message went out.
    """
    sent = []
    try:
        with celery_app.producer_or_acquire() as producer:
            for idx in chunk_indexes:
                celery_app.send_task(CONVERT_CHUNK_TASK, args=[job_id, idx], producer=producer)
                sent.append(idx)
    except OperationalError as exc:
        if not sent:
            raise QueueUnavailable(f"Broker unavailable: {exc}", job_id=job_id) from exc
        logger.warning("Job %s: broker failed after %d of %d chunk messages: %s",
                       job_id, len(sent), len(chunk_indexes), exc)
    return sent


def enqueue_merge(job_id: str):
    logger.info("Enqueueing merge for job %s", job_id)
    return _send(MERGE_TASK, [job_id], job_id)


def purge() -> int:
    """Drop every waiting message on the default queue; returns how many."""
    return celery_app.control.purge()
