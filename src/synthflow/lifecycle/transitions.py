"""Job state machine: the allowed next states for every status."""

from __future__ import annotations

from typing import Mapping

from synthflow.core.exceptions import AlreadyCompletedError, InvalidTransitionError
from synthflow.models.job import JobStatus

S = JobStatus

VALID_TRANSITIONS: Mapping[JobStatus, frozenset[JobStatus]] = {
    S.QUEUED: frozenset({S.RUNNING, S.CANCELLED, S.FAILED}),
    S.RUNNING: frozenset({S.COMPLETED, S.FAILED, S.CANCELLED, S.PAUSED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset({S.QUEUED}),
    S.CANCELLED: frozenset({S.QUEUED}),
    S.PAUSED: frozenset({S.RUNNING, S.CANCELLED, S.FAILED}),
    S.PENDING: frozenset({S.QUEUED, S.CANCELLED}),
    S.ACCEPTED: frozenset({S.QUEUED, S.CANCELLED}),
    S.REJECTED: frozenset({S.QUEUED}),
}


def allowed_transitions(current: JobStatus | str) -> frozenset[JobStatus]:
    return VALID_TRANSITIONS.get(JobStatus(current), frozenset())


def is_valid_transition(current: JobStatus | str, target: JobStatus | str) -> bool:
    return JobStatus(target) in allowed_transitions(current)


def is_terminal(status: JobStatus | str) -> bool:
    return not allowed_transitions(status)


def validate_transition(current: JobStatus | str, target: JobStatus | str, job_id: str = "") -> None:
    """Raise if `current -> target` is not allowed.

    Requests out of ``completed`` raise AlreadyCompletedError so callers can
    treat repeated completion as idempotent; everything else outside the
    table raises InvalidTransitionError.
    """
    current, target = JobStatus(current), JobStatus(target)
    if current == JobStatus.COMPLETED:
        raise AlreadyCompletedError(job_id, target.value)
    if not is_valid_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
