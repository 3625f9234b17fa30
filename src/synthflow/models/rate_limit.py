"""Per-customer rate limit and cooldown records."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from synthflow.models.base import DocumentModel


class CooldownEntry(DocumentModel):
    job_id: str
    cooldown_until: datetime


class RateLimitStatus(DocumentModel):
    """Stored at rate_limits/{customerId}."""

    customer_id: str
    current_jobs: int = Field(default=0, ge=0)
    max_jobs: int = Field(default=5, ge=1)
    cooldown_period_seconds: int = Field(default=45, ge=0)
    cooldown_jobs: list[CooldownEntry] = Field(default_factory=list)
    last_updated: Optional[datetime] = None
    version: int = 0

    def cooldown_for(self, job_id: str, now: datetime) -> Optional[CooldownEntry]:
        """Return the live cooldown entry for `job_id`, if any."""
        for entry in self.cooldown_jobs:
            if entry.job_id == job_id and entry.cooldown_until > now:
                return entry
        return None

    @property
    def available_slots(self) -> int:
        return max(self.max_jobs - self.current_jobs, 0)
