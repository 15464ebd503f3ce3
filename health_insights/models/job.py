"""Background analysis job models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


class JobInput(BaseModel):
    """Summary of the document and request that created a job."""

    filename: str
    file_type: str
    file_size: int
    message: str | None = None


class AnalysisJob(BaseModel):
    """State of a long-running analysis tracked by the job store."""

    id: str
    owner_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    message: str = "Job created"
    input: JobInput
    result: str | None = None
    model: str | None = None
    fallback: bool | None = None
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def status_payload(self) -> dict[str, object]:
        """Return the subset of fields exposed by the status endpoint."""

        payload: dict[str, object] = {
            "jobId": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
        }
        if self.status is JobStatus.COMPLETED:
            payload.update(
                result=self.result,
                model=self.model,
                fallback=bool(self.fallback),
                warnings=list(self.warnings),
            )
        if self.status is JobStatus.FAILED:
            payload["error"] = self.error
        return payload


__all__ = ["AnalysisJob", "JobInput", "JobStatus"]
