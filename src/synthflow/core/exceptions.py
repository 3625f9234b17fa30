"""Synthflow exception hierarchy."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    INVALID_TRANSITION = "INVALID_TRANSITION"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    COOLDOWN_PERIOD = "COOLDOWN_PERIOD"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"


class SynthflowError(Exception):
    """Base exception for all Synthflow errors."""


class JobLifecycleError(SynthflowError):
    """Error surfaced to callers of the orchestration engine, tagged with a stable code."""

    code: ErrorCode

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(JobLifecycleError):
    """Requested status edge is not in the transition table."""

    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        self.current = current
        self.target = target
        super().__init__(
            message or f"Invalid state transition from {current} to {target}",
            {"current": current, "target": target},
        )


class AlreadyCompletedError(JobLifecycleError):
    """Any transition requested from the terminal completed state."""

    code = ErrorCode.ALREADY_COMPLETED

    def __init__(self, job_id: str, target: str) -> None:
        self.job_id = job_id
        self.target = target
        super().__init__(
            f"Job {job_id} is already completed; cannot move to {target}",
            {"jobId": job_id, "target": target},
        )


class JobNotFoundError(JobLifecycleError):
    code = ErrorCode.JOB_NOT_FOUND

    def __init__(self, job_id: str, project_id: str | None = None) -> None:
        self.job_id = job_id
        self.project_id = project_id
        super().__init__(f"Job with ID {job_id} not found", {"jobId": job_id, "projectId": project_id})


class RateLimitExceededError(JobLifecycleError):
    """Customer already occupies all of its concurrency slots."""

    code = ErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(self, customer_id: str, current_jobs: int, max_jobs: int) -> None:
        self.customer_id = customer_id
        self.current_jobs = current_jobs
        self.max_jobs = max_jobs
        super().__init__(
            f"Rate limit exceeded for customer {customer_id}: {current_jobs}/{max_jobs} jobs active",
            {"customerId": customer_id, "currentJobs": current_jobs, "maxJobs": max_jobs},
        )


class CooldownPeriodError(JobLifecycleError):
    """Job id was cancelled recently and may not be resubmitted yet."""

    code = ErrorCode.COOLDOWN_PERIOD

    def __init__(self, job_id: str, cooldown_until: datetime) -> None:
        self.job_id = job_id
        self.cooldown_until = cooldown_until
        super().__init__(
            f"Job {job_id} is in cooldown period until {cooldown_until.isoformat()}",
            {"jobId": job_id, "cooldownUntil": cooldown_until.isoformat()},
        )


class PermissionDeniedError(JobLifecycleError):
    code = ErrorCode.PERMISSION_DENIED


class ValidationError(JobLifecycleError):
    """Malformed job configuration or request."""

    code = ErrorCode.VALIDATION_ERROR


class WebhookValidationError(ValidationError):
    """Malformed webhook registration."""

    def __init__(self, message: str, invalid_events: list[str] | None = None) -> None:
        self.invalid_events = invalid_events or []
        super().__init__(message, {"invalidEvents": self.invalid_events})


class ConcurrencyConflictError(JobLifecycleError):
    """A conditional write lost against a concurrent writer."""

    code = ErrorCode.CONCURRENCY_CONFLICT


class PersistenceError(SynthflowError):
    """Document store operation failed."""


class DocumentNotFoundError(PersistenceError):
    """Update targeted a document that does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Document {path!r} not found")


class DocumentExistsError(PersistenceError):
    """Create targeted a path that is already taken."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Document {path!r} already exists")


class CacheError(SynthflowError):
    """Redis cache operation failed."""
