"""Job, stage, and progress models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field, field_validator

from synthflow.models.base import DocumentModel


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# Statuses that hold one of the customer's concurrency slots.
OCCUPYING_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.PAUSED})


class JobErrorInfo(DocumentModel):
    """Error recorded on a failed job or stage."""

    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class Stage(DocumentModel):
    """One sequential phase of a job's pipeline."""

    name: str
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[JobErrorInfo] = None


class JobConfiguration(DocumentModel):
    """Customer-supplied generation parameters."""

    data_type: str
    data_size: int = Field(default=0, ge=0)
    input_format: Optional[str] = None
    output_format: Optional[str] = None
    record_count: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data_type")
    @classmethod
    def _data_type_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("dataType is required")
        return v.strip()


class StageUpdate(DocumentModel):
    """Requested change to a single stage, applied by the orchestrator."""

    name: str
    status: JobStatus
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    error: Optional[JobErrorInfo] = None


class Job(DocumentModel):
    """A data-generation job, stored at projects/{projectId}/jobs/{jobId}."""

    id: str
    customer_id: str
    project_id: str
    status: JobStatus = JobStatus.QUEUED
    stages: list[Stage] = Field(default_factory=list)
    progress: int = Field(default=0, ge=0, le=100)
    configuration: JobConfiguration
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[JobErrorInfo] = None
    retry_count: int = 0
    version: int = 0

    @property
    def document_path(self) -> str:
        return job_path(self.project_id, self.id)


JOBS_COLLECTION_ID = "jobs"


def job_collection(project_id: str) -> str:
    return f"projects/{project_id}/{JOBS_COLLECTION_ID}"


def job_path(project_id: str, job_id: str) -> str:
    return f"{job_collection(project_id)}/{job_id}"


# ---------------------------------------------------------------------------
# Progress variants
# ---------------------------------------------------------------------------

class SimpleProgress(DocumentModel):
    kind: Literal["simple"] = "simple"
    percent: int = Field(ge=0, le=100)


class DetailedProgress(DocumentModel):
    kind: Literal["detailed"] = "detailed"
    percent: int = Field(ge=0, le=100)
    current_stage: Optional[str] = None
    stages_completed: int = 0
    total_stages: int = 0


Progress = Annotated[Union[SimpleProgress, DetailedProgress], Field(discriminator="kind")]


def progress_percent(progress: SimpleProgress | DetailedProgress) -> int:
    """Resolve either progress shape to a 0-100 percentage."""
    if isinstance(progress, SimpleProgress):
        return progress.percent
    if isinstance(progress, DetailedProgress):
        return progress.percent
    raise TypeError(f"Unsupported progress type: {type(progress).__name__}")
