"""Stage pipeline helpers: default stages, weighted progress, sequencing.

Every function here is pure. Stage lists are never mutated in place; updates
return a new list built from copies.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Sequence

from synthflow.core.exceptions import ValidationError
from synthflow.models.job import DetailedProgress, Job, JobErrorInfo, JobStatus, SimpleProgress, Stage

STAGE_WEIGHTS: dict[str, int] = {
    "initialization": 5,
    "data-processing": 15,
    "model-generation": 30,
    "data-generation": 35,
    "output-formatting": 10,
    "finalization": 5,
}

STAGE_NAMES: tuple[str, ...] = tuple(STAGE_WEIGHTS)


def create_default_stages(data_type: str) -> list[Stage]:
    """Return the ordered base pipeline, every stage pending at 0%."""
    if not data_type or not data_type.strip():
        raise ValidationError("dataType is required to build job stages")
    return [Stage(name=name) for name in STAGE_NAMES]


def calculate_progress(stages: Sequence[Stage]) -> int:
    """Weighted completion percentage, rounded half to even. Unknown stages weigh 0."""
    total = Decimal(0)
    for stage in stages:
        weight = STAGE_WEIGHTS.get(stage.name, 0)
        if stage.status == JobStatus.COMPLETED:
            total += weight
        elif stage.status == JobStatus.RUNNING:
            total += Decimal(weight) * stage.progress / 100
    return int(total.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def update_stage_status(
    stages: Sequence[Stage],
    name: str,
    status: JobStatus | str,
    progress: int | None = None,
    *,
    now: datetime | None = None,
    error: JobErrorInfo | None = None,
) -> list[Stage]:
    """Return a new stage list with `name` moved to `status`.

    startTime is stamped on the first move into running and endTime on the
    first move into completed or failed; later moves keep the original
    stamps. An unknown `name` yields an equal copy of the input.
    """
    if progress is not None and not 0 <= progress <= 100:
        raise ValidationError(f"Stage progress must be between 0 and 100, got {progress}")
    status = JobStatus(status)
    now = now or datetime.now(timezone.utc)
    updated: list[Stage] = []
    for stage in stages:
        if stage.name != name:
            updated.append(stage.model_copy())
            continue
        changes: dict = {"status": status}
        if progress is not None:
            changes["progress"] = progress
        if status == JobStatus.RUNNING and stage.start_time is None:
            changes["start_time"] = now
        if status in (JobStatus.COMPLETED, JobStatus.FAILED) and stage.end_time is None:
            changes["end_time"] = now
        if error is not None:
            changes["error"] = error
        updated.append(stage.model_copy(update=changes))
    return updated


def reset_incomplete_stages(stages: Sequence[Stage]) -> list[Stage]:
    """Return the stages with every unfinished one back to pending at 0%. Completed stages are kept."""
    return [
        s.model_copy() if s.status == JobStatus.COMPLETED else Stage(name=s.name)
        for s in stages
    ]


def get_next_pending_stage(stages: Sequence[Stage]) -> Stage | None:
    """First pending stage, but only if it is first or its predecessor completed."""
    for index, stage in enumerate(stages):
        if stage.status != JobStatus.PENDING:
            continue
        if index == 0 or stages[index - 1].status == JobStatus.COMPLETED:
            return stage
        return None
    return None


def are_all_stages_completed(stages: Sequence[Stage]) -> bool:
    return bool(stages) and all(s.status == JobStatus.COMPLETED for s in stages)


def has_any_stage_failed_or_cancelled(stages: Sequence[Stage]) -> bool:
    return any(s.status in (JobStatus.FAILED, JobStatus.CANCELLED) for s in stages)


def has_stage(stages: Sequence[Stage], name: str) -> bool:
    return any(s.name == name for s in stages)


def summarize_progress(stages: Sequence[Stage]) -> DetailedProgress:
    running = next((s.name for s in stages if s.status == JobStatus.RUNNING), None)
    return DetailedProgress(
        percent=calculate_progress(stages),
        current_stage=running,
        stages_completed=sum(1 for s in stages if s.status == JobStatus.COMPLETED),
        total_stages=len(stages),
    )


def job_progress(job: Job) -> SimpleProgress | DetailedProgress:
    """Progress as reported to consumers: per-stage detail when the job has stages."""
    if not job.stages:
        return SimpleProgress(percent=job.progress)
    summary = summarize_progress(job.stages)
    if job.status == JobStatus.COMPLETED:
        return summary.model_copy(update={"percent": 100})
    return summary
