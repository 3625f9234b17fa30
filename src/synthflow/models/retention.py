"""Retention policy records."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from synthflow.models.base import DocumentModel


class RetentionPolicy(DocumentModel):
    """Stored at retention_policies/{customerId}."""

    customer_id: str
    retention_days: int = Field(default=180, gt=0)
    last_updated: Optional[datetime] = None


class ProjectRetentionPolicy(DocumentModel):
    """Stored at project_retention_policies/{projectId}."""

    project_id: str
    retention_days: int = Field(default=30, gt=0)
    last_updated: Optional[datetime] = None
