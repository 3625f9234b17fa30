"""Webhook registration, payload, and delivery models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import Field

from synthflow.models.base import DocumentModel
from synthflow.models.job import Job, Progress


class WebhookEvent(StrEnum):
    JOB_CREATED = "job.created"
    JOB_STARTED = "job.started"
    JOB_COMPLETED = "job.completed"
    JOB_FAILED = "job.failed"
    JOB_CANCELLED = "job.cancelled"


VALID_EVENTS = frozenset(e.value for e in WebhookEvent)


class WebhookConfig(DocumentModel):
    """Registered callback, stored at webhooks/{id}.

    `events` stays a plain string list so registration can report every
    unknown event name instead of failing on the first one.
    """

    id: Optional[str] = None
    url: str = ""
    events: list[str] = Field(default_factory=list)
    secret: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)
    project_id: Optional[str] = None
    customer_id: Optional[str] = None
    description: Optional[str] = None
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WebhookPayloadData(DocumentModel):
    model_config = {"extra": "allow"}

    job: Job
    progress: Optional[Progress] = None


class WebhookPayload(DocumentModel):
    event: str
    job_id: str
    timestamp: str  # ISO-8601
    customer_id: str
    project_id: Optional[str] = None
    data: WebhookPayloadData


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class WebhookDelivery(DocumentModel):
    """Outcome of one delivery, stored at webhook_deliveries/{id}."""

    id: str
    webhook_id: Optional[str] = None
    url: str
    event: str
    job_id: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    response_code: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED


def build_payload_data(job: Job, **extra: Any) -> WebhookPayloadData:
    return WebhookPayloadData(job=job, **extra)
