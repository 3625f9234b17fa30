"""End-to-end tests for JobOrchestrator on memory backends."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

import pytest

from synthflow.core.exceptions import (
    AlreadyCompletedError,
    ConcurrencyConflictError,
    CooldownPeriodError,
    ErrorCode,
    InvalidTransitionError,
    JobNotFoundError,
    RateLimitExceededError,
    ValidationError,
)
from synthflow.models.job import JobErrorInfo, JobStatus, StageUpdate

CONFIG = {"dataType": "tabular", "dataSize": 1000}


@pytest.fixture
def orchestrator(services):
    return services.orchestrator


@pytest.fixture
def job(orchestrator):
    return orchestrator.create_job("cust-1", "proj-1", CONFIG)


@pytest.fixture
def orchestrator_log(caplog):
    # the synthflow logger may not propagate once the app has configured logging
    logger = logging.getLogger("synthflow.lifecycle.orchestrator")
    logger.addHandler(caplog.handler)
    caplog.set_level(logging.ERROR, logger="synthflow.lifecycle.orchestrator")
    yield caplog
    logger.removeHandler(caplog.handler)


def _occupancy(services, customer_id="cust-1") -> int:
    return services.rate_limiter.get_rate_limit_status(customer_id).current_jobs


def _complete_all(orchestrator, job):
    for stage in job.stages:
        job = orchestrator.transition(job, stage_update=StageUpdate(name=stage.name, status="completed"))
    return job


class TestCreateJob:
    def test_new_job_is_queued_with_six_stages(self, orchestrator, job, store):
        assert job.status == JobStatus.QUEUED
        assert job.progress == 0
        assert len(job.stages) == 6
        assert all(s.status == JobStatus.PENDING for s in job.stages)

        doc = store.get_document(f"projects/proj-1/jobs/{job.id}")
        assert doc["customerId"] == "cust-1"
        assert doc["configuration"]["dataType"] == "tabular"
        stored = orchestrator.get_job("proj-1", job.id)
        assert (stored.id, stored.status, stored.version) == (job.id, JobStatus.QUEUED, 0)

    def test_creation_occupies_a_slot(self, services, job):
        assert _occupancy(services) == 1

    @pytest.mark.parametrize("configuration", [{}, {"dataType": "  "}, {"dataType": "x", "dataSize": -1}])
    def test_invalid_configuration(self, orchestrator, services, configuration):
        with pytest.raises(ValidationError) as exc:
            orchestrator.create_job("cust-1", "proj-1", configuration)
        assert exc.value.code == ErrorCode.VALIDATION_ERROR
        assert _occupancy(services) == 0

    def test_missing_ids(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.create_job("", "proj-1", CONFIG)

    def test_failed_write_hands_slot_back(self, services, store, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("store down")

        services.rate_limiter.admit("cust-1", "warmup")
        monkeypatch.setattr(store, "create_document", boom)
        with pytest.raises(RuntimeError):
            services.orchestrator.create_job("cust-1", "proj-1", CONFIG)
        assert _occupancy(services) == 1


class TestEndToEnd:
    def test_lifecycle_with_cooldown(self, services, orchestrator, job, clock):
        job = orchestrator.transition(
            job, JobStatus.RUNNING, StageUpdate(name="initialization", status="running")
        )
        assert job.status == JobStatus.RUNNING
        assert job.started_at == clock.now()
        assert job.stages[0].status == JobStatus.RUNNING
        assert job.stages[0].start_time == clock.now()

        clock.advance(seconds=5)
        job = orchestrator.transition(job, stage_update=[
            StageUpdate(name="initialization", status="completed"),
            StageUpdate(name="data-processing", status="running", progress=50),
        ])
        assert job.status == JobStatus.RUNNING
        assert job.progress == 12

        job = orchestrator.cancel(job)
        assert job.status == JobStatus.CANCELLED
        assert _occupancy(services) == 0
        status = services.rate_limiter.get_rate_limit_status("cust-1")
        assert [e.job_id for e in status.cooldown_jobs] == [job.id]

        with pytest.raises(CooldownPeriodError) as exc:
            orchestrator.resubmit(job)
        assert exc.value.code == ErrorCode.COOLDOWN_PERIOD
        assert orchestrator.get_job("proj-1", job.id).status == JobStatus.CANCELLED

        clock.advance(seconds=46)
        job = orchestrator.resubmit(job)
        assert job.status == JobStatus.QUEUED
        assert job.retry_count == 1
        assert _occupancy(services) == 1

    def test_all_stages_completed_completes_job(self, services, orchestrator, job, clock):
        job = orchestrator.transition(job, JobStatus.RUNNING)
        job = _complete_all(orchestrator, job)
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.completed_at == clock.now()
        assert _occupancy(services) == 0
        assert orchestrator.compute_expiry(job) is not None

    def test_failed_stage_fails_job(self, services, orchestrator, job):
        job = orchestrator.transition(job, JobStatus.RUNNING)
        error = JobErrorInfo(code="GENERATION_ERROR", message="model diverged")
        job = orchestrator.transition(
            job, stage_update=StageUpdate(name="initialization", status="failed", error=error), error=error
        )
        assert job.status == JobStatus.FAILED
        assert job.error == error
        assert job.stages[0].end_time is not None
        assert _occupancy(services) == 0

    def test_start_next_stage(self, orchestrator, job):
        job = orchestrator.start_next_stage(job)
        assert job.status == JobStatus.RUNNING
        assert job.stages[0].status == JobStatus.RUNNING
        # initialization still running, nothing else may start
        assert orchestrator.start_next_stage(job).stages[1].status == JobStatus.PENDING

    def test_pause_and_resume_keep_slot(self, services, orchestrator, job):
        job = orchestrator.transition(job, JobStatus.RUNNING)
        job = orchestrator.transition(job, JobStatus.PAUSED)
        assert _occupancy(services) == 1
        job = orchestrator.resume(job)
        assert job.status == JobStatus.RUNNING
        assert _occupancy(services) == 1

    def test_resume_failed_requeues(self, services, orchestrator, job):
        job = orchestrator.transition(job, JobStatus.FAILED)
        assert _occupancy(services) == 0
        job = orchestrator.resume(job)
        assert job.status == JobStatus.QUEUED
        assert _occupancy(services) == 1

    def test_resume_running_rejected(self, orchestrator, job):
        job = orchestrator.transition(job, JobStatus.RUNNING)
        with pytest.raises(InvalidTransitionError):
            orchestrator.resume(job)

    def test_resubmitted_job_restarts_its_failed_stage(self, orchestrator, job):
        job = orchestrator.start_next_stage(job)
        job = orchestrator.transition(job, stage_update=StageUpdate(name="initialization", status="failed"))
        assert job.status == JobStatus.FAILED

        job = orchestrator.resubmit(job)
        assert job.status == JobStatus.QUEUED
        assert job.stages[0].status == JobStatus.PENDING
        assert job.stages[0].start_time is None

        job = orchestrator.start_next_stage(job)
        assert job.status == JobStatus.RUNNING
        assert job.stages[0].status == JobStatus.RUNNING

    def test_requeue_keeps_completed_stages(self, orchestrator, job):
        job = orchestrator.start_next_stage(job)
        job = orchestrator.transition(job, stage_update=[
            StageUpdate(name="initialization", status="completed"),
            StageUpdate(name="data-processing", status="running", progress=40),
        ])
        job = orchestrator.transition(job, stage_update=StageUpdate(name="data-processing", status="failed"))

        job = orchestrator.resume(job)
        assert [s.status for s in job.stages[:2]] == [JobStatus.COMPLETED, JobStatus.PENDING]
        assert job.stages[1].progress == 0
        assert job.progress == 5
        assert orchestrator.start_next_stage(job).stages[1].status == JobStatus.RUNNING


class TestTransitionErrors:
    def test_invalid_edge(self, orchestrator, job):
        with pytest.raises(InvalidTransitionError) as exc:
            orchestrator.transition(job, JobStatus.COMPLETED)
        assert exc.value.code == ErrorCode.INVALID_TRANSITION
        assert orchestrator.get_job("proj-1", job.id).status == JobStatus.QUEUED

    def test_already_completed(self, orchestrator, job):
        job = _complete_all(orchestrator, orchestrator.transition(job, JobStatus.RUNNING))
        with pytest.raises(AlreadyCompletedError):
            orchestrator.transition(job, JobStatus.COMPLETED)
        with pytest.raises(AlreadyCompletedError):
            orchestrator.cancel(job)

    def test_unknown_job(self, orchestrator):
        with pytest.raises(JobNotFoundError) as exc:
            orchestrator.get_job("proj-1", "missing")
        assert exc.value.code == ErrorCode.JOB_NOT_FOUND

    def test_cancel_cancelled_is_invalid(self, orchestrator, job):
        job = orchestrator.cancel(job)
        with pytest.raises(InvalidTransitionError):
            orchestrator.cancel(job)

    @pytest.mark.parametrize("status", [JobStatus.CANCELLED, JobStatus.FAILED])
    def test_requesting_current_terminal_status_is_invalid(self, orchestrator, job, status):
        job = orchestrator.transition(job, status)
        with pytest.raises(InvalidTransitionError):
            orchestrator.transition(job, status)
        assert orchestrator.get_job("proj-1", job.id).version == job.version

    def test_requesting_current_running_status_is_invalid(self, orchestrator, job):
        job = orchestrator.transition(job, JobStatus.RUNNING)
        with pytest.raises(InvalidTransitionError):
            orchestrator.transition(job, JobStatus.RUNNING)

    def test_stage_only_update_needs_no_status(self, orchestrator, job):
        job = orchestrator.transition(job, JobStatus.RUNNING)
        update = StageUpdate(name="initialization", status="running", progress=40)
        job = orchestrator.transition(job, stage_update=update)
        assert job.status == JobStatus.RUNNING
        assert job.progress == 2

    def test_lost_race_leaves_stored_job_intact(self, services, orchestrator, job, store, monkeypatch):
        path = f"projects/proj-1/jobs/{job.id}"
        stale = store.get_document(path)
        winner = orchestrator.transition(job, JobStatus.RUNNING)

        original_get = store.get_document
        monkeypatch.setattr(
            store, "get_document", lambda p: stale if p == path else original_get(p)
        )
        with pytest.raises(ConcurrencyConflictError):
            orchestrator.transition(job, JobStatus.CANCELLED)
        monkeypatch.undo()

        stored = orchestrator.get_job("proj-1", job.id)
        assert stored.status == JobStatus.RUNNING
        assert stored.version == winner.version
        assert _occupancy(services) == 1

    def test_failed_readmission_leaves_job_untouched(self, services, orchestrator):
        services.rate_limiter.configure("cust-1", max_jobs=1)
        first = orchestrator.create_job("cust-1", "proj-1", CONFIG)
        first = orchestrator.transition(first, JobStatus.FAILED)
        orchestrator.create_job("cust-1", "proj-1", CONFIG)

        with pytest.raises(RateLimitExceededError):
            orchestrator.resubmit(first)
        assert orchestrator.get_job("proj-1", first.id).status == JobStatus.FAILED


class TestRateLimitScenario:
    def test_sixth_job_waits_for_a_cancellation(self, services, orchestrator):
        jobs = [
            orchestrator.transition(orchestrator.create_job("cust-1", "proj-1", CONFIG), JobStatus.RUNNING)
            for _ in range(5)
        ]
        assert _occupancy(services) == 5

        with pytest.raises(RateLimitExceededError) as exc:
            orchestrator.create_job("cust-1", "proj-1", CONFIG)
        assert exc.value.code == ErrorCode.RATE_LIMIT_EXCEEDED
        assert len(orchestrator.list_jobs("proj-1")) == 5

        orchestrator.cancel(jobs[0])
        sixth = orchestrator.create_job("cust-1", "proj-1", CONFIG)
        assert sixth.status == JobStatus.QUEUED
        assert _occupancy(services) == 5

    def test_other_customer_unaffected(self, orchestrator):
        for _ in range(5):
            orchestrator.create_job("cust-1", "proj-1", CONFIG)
        assert orchestrator.create_job("cust-2", "proj-1", CONFIG).customer_id == "cust-2"


class TestQueries:
    def test_list_jobs_filters(self, orchestrator, clock):
        a = orchestrator.create_job("cust-1", "proj-1", CONFIG)
        clock.advance(seconds=1)
        b = orchestrator.create_job("cust-2", "proj-1", CONFIG)
        orchestrator.create_job("cust-1", "proj-2", CONFIG)

        assert [j.id for j in orchestrator.list_jobs("proj-1")] == [b.id, a.id]
        assert [j.id for j in orchestrator.list_jobs("proj-1", customer_id="cust-1")] == [a.id]
        assert orchestrator.list_jobs("proj-1", status="running") == []

    def test_job_history_spans_projects_newest_first(self, orchestrator, clock):
        a = orchestrator.create_job("cust-1", "proj-1", CONFIG)
        clock.advance(seconds=1)
        b = orchestrator.create_job("cust-1", "proj-2", CONFIG)
        clock.advance(seconds=1)
        orchestrator.create_job("cust-2", "proj-1", CONFIG)
        clock.advance(seconds=1)
        a = orchestrator.transition(a, JobStatus.RUNNING)

        assert [j.id for j in orchestrator.get_job_history("cust-1")] == [a.id, b.id]
        assert [j.id for j in orchestrator.get_job_history("cust-1", status="queued")] == [b.id]
        assert [j.id for j in orchestrator.get_job_history("cust-1", limit=1, offset=1)] == [b.id]

    def test_job_history_date_window_uses_start_time(self, orchestrator, clock):
        early = orchestrator.create_job("cust-1", "proj-1", CONFIG)
        early = orchestrator.transition(early, JobStatus.RUNNING)
        clock.advance(hours=2)
        late = orchestrator.create_job("cust-1", "proj-2", CONFIG)
        late = orchestrator.transition(late, JobStatus.RUNNING)
        orchestrator.create_job("cust-1", "proj-1", CONFIG)  # never started

        history = orchestrator.get_job_history
        assert [j.id for j in history("cust-1", start_date=late.started_at)] == [late.id]
        assert [j.id for j in history("cust-1", end_date=early.started_at)] == [early.id]
        naive_window = {"start_date": datetime(2024, 3, 1, 11), "end_date": datetime(2024, 3, 1, 13)}
        assert [j.id for j in history("cust-1", **naive_window)] == [early.id]
        assert len(history("cust-1", start_date=early.started_at - timedelta(days=1))) == 2

    def test_job_history_default_limit(self, services, orchestrator):
        services.rate_limiter.configure("cust-1", max_jobs=20)
        for n in range(12):
            orchestrator.create_job("cust-1", f"proj-{n}", CONFIG)
        assert len(orchestrator.get_job_history("cust-1")) == 10

    def test_job_history_requires_customer(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.get_job_history("")


class TestWebhookEvents:
    def _events(self, services, sender):
        # drains the delivery pool; deliveries run concurrently so order is not kept
        services.webhooks.close()
        return sorted(json.loads(r.body)["event"] for r in sender.sent)

    def test_lifecycle_events_fire(self, services, orchestrator, sender):
        services.webhooks.register({
            "url": "https://hooks.example.com/all",
            "customerId": "cust-1",
            "events": ["job.created", "job.started", "job.completed", "job.failed", "job.cancelled"],
        })
        job = orchestrator.create_job("cust-1", "proj-1", CONFIG)
        job = orchestrator.transition(job, JobStatus.RUNNING)
        _complete_all(orchestrator, job)

        assert self._events(services, sender) == ["job.completed", "job.created", "job.started"]

    def test_delivery_failure_does_not_reach_caller(self, services, orchestrator, sender):
        sender.default = 500
        services.webhooks.register({
            "url": "https://hooks.example.com/broken", "customerId": "cust-1", "events": ["job.cancelled"],
        })
        job = orchestrator.cancel(orchestrator.create_job("cust-1", "proj-1", CONFIG))
        assert job.status == JobStatus.CANCELLED
        assert self._events(services, sender) == ["job.cancelled"]

    def test_payload_reports_stage_progress(self, services, orchestrator, sender):
        services.webhooks.register({
            "url": "https://hooks.example.com/started", "customerId": "cust-1", "events": ["job.started"],
        })
        orchestrator.start_next_stage(orchestrator.create_job("cust-1", "proj-1", CONFIG))
        services.webhooks.close()

        (request,) = sender.sent
        progress = json.loads(request.body)["data"]["progress"]
        assert progress["kind"] == "detailed"
        assert progress["currentStage"] == "initialization"
        assert progress["totalStages"] == 6

    def test_dispatch_failure_does_not_reach_caller(self, services, orchestrator, job, orchestrator_log):
        services.webhooks.register({
            "url": "https://hooks.example.com/started", "customerId": "cust-1", "events": ["job.started"],
        })
        services.webhooks.close()

        job = orchestrator.transition(job, JobStatus.RUNNING)
        assert job.status == JobStatus.RUNNING
        assert orchestrator.get_job("proj-1", job.id).status == JobStatus.RUNNING
        assert "Could not dispatch job.started webhooks" in orchestrator_log.text


def _conflict(*args, **kwargs):
    raise ConcurrencyConflictError("Precondition failed on 'rate_limits/cust-1'")


@pytest.mark.usefixtures("orchestrator_log")
class TestOccupancyDrift:
    def test_cancel_succeeds_when_cooldown_write_fails(self, services, orchestrator, job, monkeypatch, caplog):
        monkeypatch.setattr(services.rate_limiter, "enter_cooldown", _conflict)
        job = orchestrator.cancel(job)

        assert job.status == JobStatus.CANCELLED
        assert orchestrator.get_job("proj-1", job.id).status == JobStatus.CANCELLED
        assert _occupancy(services) == 0
        assert "Occupancy drift for customer cust-1" in caplog.text

    def test_complete_succeeds_when_release_fails(self, services, orchestrator, job, monkeypatch, caplog):
        job = orchestrator.transition(job, JobStatus.RUNNING)
        monkeypatch.setattr(services.rate_limiter, "release", _conflict)
        job = _complete_all(orchestrator, job)

        assert job.status == JobStatus.COMPLETED
        assert _occupancy(services) == 1
        assert "Occupancy drift" in caplog.text
