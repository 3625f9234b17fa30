"""Per-customer concurrency limiter with post-cancellation cooldown.

State lives in one document per customer (``rate_limits/{customerId}``).
Every mutation is a read / compute / compare-and-set on the document's
``version``; a lost race re-reads and retries, so concurrent admissions for
the same customer can never push ``currentJobs`` past ``maxJobs``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from synthflow.core.config import RateLimitConfig
from synthflow.core.exceptions import (
    ConcurrencyConflictError,
    CooldownPeriodError,
    DocumentExistsError,
    RateLimitExceededError,
    ValidationError,
)
from synthflow.core.protocols import IClock, IDocumentStore
from synthflow.models.rate_limit import CooldownEntry, RateLimitStatus

logger = logging.getLogger(__name__)

RATE_LIMITS_COLLECTION = "rate_limits"


def _prune(status: RateLimitStatus, now: datetime) -> bool:
    """Drop expired cooldown entries in place. Returns True if anything was dropped."""
    live = [e for e in status.cooldown_jobs if e.cooldown_until > now]
    dropped = len(live) != len(status.cooldown_jobs)
    status.cooldown_jobs = live
    return dropped


class RateLimiter:
    """Admission control for customer concurrency slots."""

    def __init__(self, store: IDocumentStore, clock: IClock,
                 config: RateLimitConfig | None = None) -> None:
        self._store = store
        self._clock = clock
        self._config = config or RateLimitConfig()

    @staticmethod
    def _path(customer_id: str) -> str:
        return f"{RATE_LIMITS_COLLECTION}/{customer_id}"

    def _default(self, customer_id: str) -> RateLimitStatus:
        return RateLimitStatus(
            customer_id=customer_id,
            max_jobs=self._config.max_jobs,
            cooldown_period_seconds=self._config.cooldown_period_seconds,
        )

    def _load(self, customer_id: str) -> tuple[RateLimitStatus, bool]:
        """Return (status, exists_in_store)."""
        doc = self._store.get_document(self._path(customer_id))
        if doc is None:
            return self._default(customer_id), False
        return RateLimitStatus.from_document(doc), True

    def _mutate(self, customer_id: str,
                change: Callable[[RateLimitStatus, datetime], None]) -> RateLimitStatus:
        """Apply `change` under compare-and-set, retrying lost races.

        `change` mutates the freshly loaded status in place or raises to
        abort without writing.
        """
        attempts = self._config.max_update_attempts
        for attempt in range(1, attempts + 1):
            status, exists = self._load(customer_id)
            now = self._clock.now()
            _prune(status, now)
            change(status, now)
            expected_version = status.version
            status.version = expected_version + 1
            status.last_updated = now
            try:
                if exists:
                    self._store.update_document(
                        self._path(customer_id),
                        status.to_document(),
                        precondition={"version": expected_version},
                    )
                else:
                    self._store.create_document(
                        RATE_LIMITS_COLLECTION, status.to_document(), document_id=customer_id
                    )
                return status
            except (ConcurrencyConflictError, DocumentExistsError):
                logger.debug(
                    "Rate limit update for customer %s lost a race (attempt %d/%d)",
                    customer_id, attempt, attempts,
                )
        raise ConcurrencyConflictError(
            f"Could not update rate limit for customer {customer_id} after {attempts} attempts"
        )

    # ---- queries ----

    def get_rate_limit_status(self, customer_id: str) -> RateLimitStatus:
        """Current status with expired cooldowns pruned (and the pruning persisted)."""
        status, exists = self._load(customer_id)
        if exists and _prune(status, self._clock.now()):
            return self._mutate(customer_id, lambda s, now: None)
        return status

    def check_rate_limit(self, customer_id: str, job_id: str | None = None) -> bool:
        """True if a job (optionally a specific resubmitted id) could be admitted now."""
        status = self.get_rate_limit_status(customer_id)
        if job_id is not None and status.cooldown_for(job_id, self._clock.now()) is not None:
            return False
        return status.current_jobs < status.max_jobs

    # ---- mutations ----

    def admit(self, customer_id: str, job_id: str) -> RateLimitStatus:
        """Occupy one slot for `job_id` or raise CooldownPeriodError / RateLimitExceededError."""

        def change(status: RateLimitStatus, now: datetime) -> None:
            entry = status.cooldown_for(job_id, now)
            if entry is not None:
                raise CooldownPeriodError(job_id, entry.cooldown_until)
            if status.current_jobs >= status.max_jobs:
                raise RateLimitExceededError(customer_id, status.current_jobs, status.max_jobs)
            status.current_jobs += 1

        status = self._mutate(customer_id, change)
        logger.info(
            "Admitted job %s for customer %s (%d/%d slots used)",
            job_id, customer_id, status.current_jobs, status.max_jobs,
        )
        return status

    def release(self, customer_id: str, job_id: str) -> RateLimitStatus:
        """Free the slot held by `job_id`. Never drops below zero."""

        def change(status: RateLimitStatus, now: datetime) -> None:
            if status.current_jobs == 0:
                logger.warning(
                    "Release of job %s for customer %s with no occupied slots", job_id, customer_id
                )
            status.current_jobs = max(status.current_jobs - 1, 0)

        status = self._mutate(customer_id, change)
        logger.info(
            "Released job %s for customer %s (%d/%d slots used)",
            job_id, customer_id, status.current_jobs, status.max_jobs,
        )
        return status

    def enter_cooldown(self, customer_id: str, job_id: str,
                       duration_seconds: int | None = None) -> CooldownEntry:
        """Block resubmission of `job_id` until now + duration (default: customer's period)."""
        entry: list[CooldownEntry] = []

        def change(status: RateLimitStatus, now: datetime) -> None:
            seconds = status.cooldown_period_seconds if duration_seconds is None else duration_seconds
            new_entry = CooldownEntry(job_id=job_id, cooldown_until=now + timedelta(seconds=seconds))
            status.cooldown_jobs = [e for e in status.cooldown_jobs if e.job_id != job_id]
            status.cooldown_jobs.append(new_entry)
            entry[:] = [new_entry]

        self._mutate(customer_id, change)
        logger.info(
            "Added job %s to cooldown until %s", job_id, entry[0].cooldown_until.isoformat()
        )
        return entry[0]

    def configure(self, customer_id: str, max_jobs: int | None = None,
                  cooldown_period_seconds: int | None = None) -> RateLimitStatus:
        """Override the customer's slot count and/or cooldown period."""
        if max_jobs is not None and max_jobs < 1:
            raise ValidationError("maxJobs must be at least 1")
        if cooldown_period_seconds is not None and cooldown_period_seconds < 0:
            raise ValidationError("cooldownPeriodSeconds must not be negative")

        def change(status: RateLimitStatus, now: datetime) -> None:
            if max_jobs is not None:
                status.max_jobs = max_jobs
            if cooldown_period_seconds is not None:
                status.cooldown_period_seconds = cooldown_period_seconds

        return self._mutate(customer_id, change)
