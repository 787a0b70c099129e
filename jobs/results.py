"""
What a submitter sees for a job. Each stored job maps to exactly one of the
variants below, so a caller never gets a half-built shape (e.g. a chunk list
on a job that is still converting).
"""
from dataclasses import dataclass, field

from .models import Chunk, Job


@dataclass(frozen=True)
class ChunkResult:
    output_key: str
    start_time: float


@dataclass(frozen=True)
class Accepted:
    job_id: str
    status = "ACCEPTED"

    def message(self) -> str:
        return "Job accepted; splitting will start shortly."


@dataclass(frozen=True)
class InProgress:
    job_id: str
    status: str
    completed: int
    expected: int | None

    def message(self) -> str:
        if self.expected is None:
            return "Splitting source."
        return f"{self.completed}/{self.expected} chunks converted."


@dataclass(frozen=True)
class Complete:
    job_id: str
    output_key: str
    chunks: list[ChunkResult] = field(default_factory=list)
    status = Job.Status.COMPLETE.value

    def message(self) -> str:
        return f"Merged {len(self.chunks)} chunks."


@dataclass(frozen=True)
class Failed:
    job_id: str
    reason: str
    status = Job.Status.FAILED.value

    def message(self) -> str:
        return self.reason or "Job failed."


JobResult = Accepted | InProgress | Complete | Failed


def result_for(job: Job) -> JobResult:
    if job.status == Job.Status.COMPLETE:
        chunks = [
            ChunkResult(output_key=c.output_key, start_time=c.start_time)
            for c in job.chunks.filter(status=Chunk.Status.DONE).order_by("index")
        ]
        return Complete(job_id=job.id, output_key=job.output_key, chunks=chunks)
    if job.status == Job.Status.FAILED:
        return Failed(job_id=job.id, reason=job.error)
    return InProgress(
        job_id=job.id,
        status=job.status,
        completed=job.completed_chunk_count,
        expected=job.expected_chunk_count,
    )


def to_payload(result: JobResult) -> dict:
    payload = {"job_id": result.job_id, "status": result.status, "message": result.message()}
    if isinstance(result, Complete):
        payload["output_key"] = result.output_key
        payload["chunks"] = [{"output_key": c.output_key, "start_time": c.start_time} for c in result.chunks]
    return payload
