"""Retention policy records and expiry computation.

Only record-keeping lives here. Deleting expired jobs is left to an external
reaper that consumes `compute_expiry` / `is_expired`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from synthflow.core.config import RetentionConfig
from synthflow.core.protocols import ICacheBackend, IClock, IDocumentStore
from synthflow.models.job import Job
from synthflow.models.retention import ProjectRetentionPolicy, RetentionPolicy

logger = logging.getLogger(__name__)

RETENTION_COLLECTION = "retention_policies"
PROJECT_RETENTION_COLLECTION = "project_retention_policies"


class RetentionPolicyStore:
    """Per-customer (and per-project) retention days with defaults and caching."""

    def __init__(self, store: IDocumentStore, clock: IClock, cache: ICacheBackend | None = None,
                 config: RetentionConfig | None = None) -> None:
        self._store = store
        self._clock = clock
        self._cache = cache
        self._config = config or RetentionConfig()

    @staticmethod
    def _cache_key(customer_id: str) -> str:
        return f"retention:{customer_id}"

    def get_retention_policy(self, customer_id: str) -> RetentionPolicy:
        cache_key = self._cache_key(customer_id)

        # Check cache first
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return RetentionPolicy.model_validate_json(cached)

        doc = self._store.get_document(f"{RETENTION_COLLECTION}/{customer_id}")
        if doc is None:
            policy = RetentionPolicy(
                customer_id=customer_id, retention_days=self._config.default_retention_days
            )
        else:
            policy = RetentionPolicy.from_document(doc)

        if self._cache is not None:
            self._cache.setex(
                cache_key, self._config.cache_ttl_seconds, policy.model_dump_json(by_alias=True)
            )
        return policy

    def get_retention_days(self, customer_id: str) -> int:
        return self.get_retention_policy(customer_id).retention_days

    def set_retention_days(self, customer_id: str, days: int) -> bool:
        """Store `days` for the customer. Returns False (and writes nothing) for days <= 0."""
        if days <= 0:
            logger.warning("Rejected retention of %d days for customer %s", days, customer_id)
            return False
        policy = RetentionPolicy(
            customer_id=customer_id, retention_days=days, last_updated=self._clock.now()
        )
        self._store.set_document(f"{RETENTION_COLLECTION}/{customer_id}", policy.to_document())
        if self._cache is not None:
            self._cache.delete(self._cache_key(customer_id))
        logger.info("Set retention policy for customer %s to %d days", customer_id, days)
        return True

    def get_project_retention_days(self, project_id: str) -> int:
        doc = self._store.get_document(f"{PROJECT_RETENTION_COLLECTION}/{project_id}")
        if doc is None:
            return self._config.project_retention_days
        return ProjectRetentionPolicy.from_document(doc).retention_days

    def set_project_retention_days(self, project_id: str, days: int) -> bool:
        if days <= 0:
            logger.warning("Rejected retention of %d days for project %s", days, project_id)
            return False
        policy = ProjectRetentionPolicy(
            project_id=project_id, retention_days=days, last_updated=self._clock.now()
        )
        self._store.set_document(f"{PROJECT_RETENTION_COLLECTION}/{project_id}", policy.to_document())
        logger.info("Set retention policy for project %s to %d days", project_id, days)
        return True

    @staticmethod
    def compute_expiry(job: Job, policy: RetentionPolicy) -> datetime | None:
        """completedAt + retentionDays, or None while the job has not completed."""
        if job.completed_at is None:
            return None
        return job.completed_at + timedelta(days=policy.retention_days)

    def is_expired(self, job: Job, policy: RetentionPolicy, now: datetime | None = None) -> bool:
        expiry = self.compute_expiry(job, policy)
        return expiry is not None and expiry <= (now or self._clock.now())
