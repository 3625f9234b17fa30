"""JobOrchestrator: the single entry point that mutates jobs.

Each transition is one read / validate / conditional-write cycle on the job
document, guarded by the job's ``version``. Concurrency slots are taken
before the write (and handed back if the write fails) and released after it.
Webhooks fire only once the new state is stored; their failures never reach
the caller.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Sequence

from pydantic import ValidationError as PydanticValidationError

from synthflow.core.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    JobNotFoundError,
    SynthflowError,
    ValidationError,
)
from synthflow.core.protocols import IClock, IDocumentStore, QueryCondition
from synthflow.lifecycle import stages as stage_progress
from synthflow.lifecycle.rate_limiter import RateLimiter
from synthflow.lifecycle.retention import RetentionPolicyStore
from synthflow.lifecycle.transitions import validate_transition
from synthflow.lifecycle.webhooks import WebhookDispatcher
from synthflow.models.job import (
    JOBS_COLLECTION_ID,
    OCCUPYING_STATUSES,
    Job,
    JobConfiguration,
    JobErrorInfo,
    JobStatus,
    StageUpdate,
    job_collection,
    job_path,
    progress_percent,
)
from synthflow.models.rate_limit import RateLimitStatus
from synthflow.models.retention import RetentionPolicy
from synthflow.models.webhook import WebhookEvent

logger = logging.getLogger(__name__)

CANCELLABLE = frozenset({JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.PAUSED})
RESUMABLE = frozenset({JobStatus.PAUSED, JobStatus.FAILED})
RESUBMITTABLE = frozenset({JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.REJECTED})


def _event_for(previous: JobStatus, status: JobStatus) -> WebhookEvent | None:
    if status == JobStatus.RUNNING and previous == JobStatus.QUEUED:
        return WebhookEvent.JOB_STARTED
    return {
        JobStatus.COMPLETED: WebhookEvent.JOB_COMPLETED,
        JobStatus.FAILED: WebhookEvent.JOB_FAILED,
        JobStatus.CANCELLED: WebhookEvent.JOB_CANCELLED,
    }.get(status)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class JobOrchestrator:
    """Creates jobs and drives them through validated transitions."""

    def __init__(
        self,
        *,
        store: IDocumentStore,
        clock: IClock,
        rate_limiter: RateLimiter,
        retention: RetentionPolicyStore,
        webhooks: WebhookDispatcher,
    ) -> None:
        self._store = store
        self._clock = clock
        self._rate_limiter = rate_limiter
        self._retention = retention
        self._webhooks = webhooks

    # ---- reads ----

    def get_job(self, project_id: str, job_id: str) -> Job:
        doc = self._store.get_document(job_path(project_id, job_id))
        if doc is None:
            raise JobNotFoundError(job_id, project_id)
        return Job.from_document(doc)

    def list_jobs(self, project_id: str, customer_id: str | None = None,
                  status: JobStatus | str | None = None, limit: int = 50,
                  offset: int = 0) -> list[Job]:
        """Jobs in a project, newest first."""
        conditions: list[QueryCondition] = []
        if customer_id is not None:
            conditions.append(QueryCondition(field="customerId", operator="==", value=customer_id))
        if status is not None:
            conditions.append(QueryCondition(field="status", operator="==", value=JobStatus(status).value))
        jobs = [Job.from_document(d) for d in self._store.query_documents(job_collection(project_id), conditions)]
        jobs.sort(key=lambda j: j.updated_at, reverse=True)
        return jobs[offset:offset + limit]

    def get_job_history(
        self,
        customer_id: str,
        *,
        status: JobStatus | str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Job]:
        """A customer's jobs across all projects, most recently updated first.

        `start_date` and `end_date` bound `started_at` inclusively; jobs that
        never started fall outside any window. Naive datetimes are taken as UTC.
        """
        if not customer_id:
            raise ValidationError("customerId is required")
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        conditions = [QueryCondition(field="customerId", operator="==", value=customer_id)]
        if status is not None:
            conditions.append(QueryCondition(field="status", operator="==", value=JobStatus(status).value))
        docs = self._store.query_collection_group(JOBS_COLLECTION_ID, conditions)
        jobs = [Job.from_document(d) for d in docs]

        if start_date is not None or end_date is not None:
            lower, upper = _as_utc(start_date), _as_utc(end_date)
            jobs = [
                j for j in jobs
                if j.started_at is not None
                and (lower is None or j.started_at >= lower)
                and (upper is None or j.started_at <= upper)
            ]
        jobs.sort(key=lambda j: j.updated_at, reverse=True)
        return jobs[offset:offset + limit]

    def get_rate_limit_status(self, customer_id: str) -> RateLimitStatus:
        return self._rate_limiter.get_rate_limit_status(customer_id)

    def get_retention_policy(self, customer_id: str) -> RetentionPolicy:
        return self._retention.get_retention_policy(customer_id)

    def compute_expiry(self, job: Job) -> datetime | None:
        return self._retention.compute_expiry(job, self._retention.get_retention_policy(job.customer_id))

    def _notify(self, job: Job, event: WebhookEvent) -> None:
        try:
            self._webhooks.trigger(job, event)
        except Exception:
            logger.exception("Could not dispatch %s webhooks for job %s", event.value, job.id)

    def _free_slot(self, job: Job, cooldown: bool) -> None:
        """Release the job's slot after its write. Failures are logged, not raised."""
        try:
            self._rate_limiter.release(job.customer_id, job.id)
            if cooldown:
                self._rate_limiter.enter_cooldown(job.customer_id, job.id)
        except SynthflowError:
            logger.exception(
                "Occupancy drift for customer %s: job %s is %s but its slot%s was not updated",
                job.customer_id, job.id, job.status.value, " or cooldown" if cooldown else "",
            )

    # ---- creation ----

    def create_job(self, customer_id: str, project_id: str,
                   configuration: JobConfiguration | dict[str, Any]) -> Job:
        if not customer_id or not project_id:
            raise ValidationError("customerId and projectId are required")
        if isinstance(configuration, dict):
            try:
                configuration = JobConfiguration.model_validate(configuration)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid job configuration: {exc.errors()}") from exc

        job_id = str(uuid.uuid4())
        now = self._clock.now()
        job = Job(
            id=job_id,
            customer_id=customer_id,
            project_id=project_id,
            status=JobStatus.QUEUED,
            stages=stage_progress.create_default_stages(configuration.data_type),
            progress=0,
            configuration=configuration,
            created_at=now,
            updated_at=now,
        )

        self._rate_limiter.admit(customer_id, job_id)
        try:
            self._store.create_document(job_collection(project_id), job.to_document(), document_id=job_id)
        except Exception:
            self._rate_limiter.release(customer_id, job_id)
            raise

        logger.info(
            "Created job %s for customer %s project %s dataType=%s",
            job_id, customer_id, project_id, configuration.data_type,
        )
        self._notify(job, WebhookEvent.JOB_CREATED)
        return job

    # ---- transitions ----

    def transition(
        self,
        job: Job,
        next_status: JobStatus | str | None = None,
        stage_update: StageUpdate | Sequence[StageUpdate] | None = None,
        *,
        error: JobErrorInfo | None = None,
    ) -> Job:
        """Apply stage updates and/or a status change to the stored job.

        All stages completed forces ``completed``; a failed or cancelled stage
        proposes ``failed`` when no status was requested. With no requested
        and no forced status the call is a stage/progress-only update. A
        requested status is always validated, so asking for the current
        status raises InvalidTransitionError.
        """
        current = self.get_job(job.project_id, job.id)
        requested = JobStatus(next_status) if next_status is not None else None
        if current.status == JobStatus.COMPLETED:
            raise AlreadyCompletedError(current.id, (requested or JobStatus.COMPLETED).value)

        now = self._clock.now()
        stages = current.stages
        if isinstance(stage_update, StageUpdate):
            stage_update = [stage_update]
        for update in stage_update or ():
            stages = stage_progress.update_stage_status(
                stages, update.name, update.status, update.progress, now=now, error=update.error,
            )

        target = requested
        if stage_progress.are_all_stages_completed(stages):
            target = JobStatus.COMPLETED
        elif target is None and stage_progress.has_any_stage_failed_or_cancelled(stages):
            target = JobStatus.FAILED
        if target is None:
            target = current.status

        changes_status = target != current.status
        if changes_status or requested is not None:
            validate_transition(current.status, target, current.id)

        was_occupying = current.status in OCCUPYING_STATUSES
        will_occupy = target in OCCUPYING_STATUSES
        if changes_status and will_occupy and not was_occupying:
            self._rate_limiter.admit(current.customer_id, current.id)

        if changes_status and target == JobStatus.QUEUED:
            # a requeued job reruns everything it did not finish
            stages = stage_progress.reset_incomplete_stages(stages)
        summary = stage_progress.summarize_progress(stages)

        updated = current.model_copy(update={
            "status": target,
            "stages": stages,
            "progress": 100 if target == JobStatus.COMPLETED else progress_percent(summary),
            "updated_at": now,
            "version": current.version + 1,
        })
        if changes_status:
            if target == JobStatus.RUNNING and current.started_at is None:
                updated.started_at = now
            if target == JobStatus.COMPLETED:
                updated.completed_at = now
            if target == JobStatus.FAILED and error is not None:
                updated.error = error
            if target == JobStatus.QUEUED:
                updated.retry_count = current.retry_count + 1

        try:
            self._store.update_document(
                job_path(current.project_id, current.id),
                updated.to_document(),
                precondition={"version": current.version},
            )
        except Exception:
            if changes_status and will_occupy and not was_occupying:
                self._rate_limiter.release(current.customer_id, current.id)
            raise

        if not changes_status:
            logger.debug("Updated stages of job %s (progress %d%%)", current.id, updated.progress)
            return updated

        logger.info(
            "Updated job %s status %s -> %s (customer %s)",
            current.id, current.status.value, target.value, current.customer_id,
        )
        if was_occupying and not will_occupy:
            self._free_slot(updated, cooldown=target == JobStatus.CANCELLED)

        event = _event_for(current.status, target)
        if event is not None:
            self._notify(updated, event)
        return updated

    def cancel(self, job: Job) -> Job:
        current = self.get_job(job.project_id, job.id)
        if current.status not in CANCELLABLE:
            if current.status == JobStatus.COMPLETED:
                raise AlreadyCompletedError(current.id, JobStatus.CANCELLED.value)
            raise InvalidTransitionError(
                current.status.value, JobStatus.CANCELLED.value,
                f"Cannot cancel job in {current.status.value} state",
            )
        return self.transition(current, JobStatus.CANCELLED)

    def resume(self, job: Job) -> Job:
        """paused -> running, failed -> queued."""
        current = self.get_job(job.project_id, job.id)
        if current.status not in RESUMABLE:
            raise InvalidTransitionError(
                current.status.value,
                JobStatus.RUNNING.value if current.status != JobStatus.FAILED else JobStatus.QUEUED.value,
                f"Cannot resume job in {current.status.value} state",
            )
        target = JobStatus.RUNNING if current.status == JobStatus.PAUSED else JobStatus.QUEUED
        return self.transition(current, target)

    def resubmit(self, job: Job) -> Job:
        """Put a failed, cancelled or rejected job back in the queue (cooldown applies)."""
        current = self.get_job(job.project_id, job.id)
        if current.status not in RESUBMITTABLE:
            raise InvalidTransitionError(
                current.status.value, JobStatus.QUEUED.value,
                f"Cannot resubmit job in {current.status.value} state",
            )
        return self.transition(current, JobStatus.QUEUED)

    def start_next_stage(self, job: Job) -> Job:
        """Move the next runnable pending stage to running (starting the job if queued)."""
        current = self.get_job(job.project_id, job.id)
        stage = stage_progress.get_next_pending_stage(current.stages)
        if stage is None:
            return current
        next_status = JobStatus.RUNNING if current.status == JobStatus.QUEUED else None
        return self.transition(
            current, next_status, StageUpdate(name=stage.name, status=JobStatus.RUNNING, progress=0)
        )
