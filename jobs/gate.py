"""
Completion gate: decides, exactly once per job, that every chunk is done.

Three guards stack up:
  1. mark_chunk_done only succeeds once per chunk, so redelivered
     completions never reach the counter;
  2. the completed count is incremented by a single conditional UPDATE;
  3. IN_PROGRESS -> MERGING is a compare-and-swap, so among callers that
     see the threshold only one gets True and goes on to merge.
"""
import logging

from django.db import transaction

from . import store
from .errors import ConditionalWriteConflict
from .models import Job

logger = logging.getLogger(__name__)


def on_chunk_complete(job_id: str, chunk_index: int, output_key: str | None = None) -> bool:
    """
    Record that a chunk finished. Returns True only for the caller that must
    trigger the merge.
    """
    # DONE and the count move together or not at all
    with transaction.atomic():
        if store.mark_chunk_done(job_id, chunk_index, output_key):
            logger.debug("Job %s chunk %d already done; duplicate completion ignored", job_id, chunk_index)
            return False
        try:
            new_count, expected = store.increment_completed_count(job_id)
        except ConditionalWriteConflict:
            # job left the active states (failed) or is somehow already full
            transaction.set_rollback(True)
            logger.info("Job %s no longer counting completions; chunk %d not counted", job_id, chunk_index)
            return False

    logger.info("Job %s: chunk %d complete (%d/%d)", job_id, chunk_index, new_count, expected)
    if new_count < expected:
        return False
    return _close_gate(job_id)


def check_ready(job_id: str) -> bool:
    """
    Re-evaluate the threshold without a new completion. Used once the split
    finishes, in case every chunk completed while the job was still SPLITTING.
    """
    job = store.get_job(job_id)
    if job is None or job.expected_chunk_count is None:
        return False
    if job.completed_chunk_count < job.expected_chunk_count:
        return False
    return _close_gate(job_id)


def _close_gate(job_id: str) -> bool:
    won = store.transition_job_status(job_id, Job.Status.IN_PROGRESS, Job.Status.MERGING)
    if not won:
        # still SPLITTING (the splitter will re-check) or another caller already won
        logger.debug("Job %s: merge gate not taken by this caller", job_id)
    return won
