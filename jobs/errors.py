"""
Error types for the chunked conversion pipeline.

Everything derives from PipelineError. ConditionalWriteConflict is the
benign one: a concurrent or duplicate operation already applied the change.
StoreUnavailable, QueueUnavailable and ObjectStoreUnavailable are
infrastructure failures that the task layer retries with backoff.
"""


class PipelineError(Exception):
    """Base exception for all pipeline failures."""

    def __init__(self, message: str, job_id: str | None = None):
        self.job_id = job_id
        self.message = message
        super().__init__(message)


class SourceUnavailable(PipelineError):
    """The source asset cannot be read or has no known duration."""


class ConversionFailed(PipelineError):
    """The codec failed on one chunk."""

    def __init__(self, message: str, job_id: str | None = None, chunk_index: int | None = None):
        self.chunk_index = chunk_index
        super().__init__(message, job_id=job_id)


class ConditionalWriteConflict(PipelineError):
    """A conditional update matched no row; someone else already did it."""


class IncompleteJob(PipelineError):
    """A merge was attempted while at least one chunk has no output."""

    def __init__(self, job_id: str, missing: list[int]):
        self.missing = missing
        super().__init__(f"Job {job_id} is missing chunk outputs: {missing}", job_id=job_id)


class StoreUnavailable(PipelineError):
    """The job database could not be reached."""


class QueueUnavailable(PipelineError):
    """The broker rejected or could not accept a message."""


class ObjectStoreUnavailable(PipelineError):
    """The object store failed for a reason other than a missing key."""


class UnknownChunk(PipelineError):
    """A work item refers to a chunk that was never created."""

    def __init__(self, job_id: str, chunk_index: int):
        self.chunk_index = chunk_index
        super().__init__(f"No chunk {chunk_index} for job {job_id}", job_id=job_id)


class ObjectNotFound(PipelineError):
    """The object store has no object under the requested key."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object not found: {key}")
