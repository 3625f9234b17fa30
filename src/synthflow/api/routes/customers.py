"""Per-customer rate-limit, retention, and job history endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from synthflow.core.exceptions import ValidationError
from synthflow.models.job import JobStatus

router = APIRouter(tags=["customers"])


class RetentionUpdate(BaseModel):
    retentionDays: int = Field(gt=0)


@router.get("/{customer_id}/rate-limit")
async def get_rate_limit(customer_id: str, request: Request) -> dict[str, Any]:
    status = request.app.state.services.orchestrator.get_rate_limit_status(customer_id)
    return status.to_document()


@router.get("/{customer_id}/jobs")
async def get_job_history(
    customer_id: str,
    request: Request,
    status: Optional[JobStatus] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[dict[str, Any]]:
    jobs = request.app.state.services.orchestrator.get_job_history(
        customer_id, status=status, start_date=startDate, end_date=endDate, limit=limit, offset=offset,
    )
    return [job.to_document() for job in jobs]


@router.get("/{customer_id}/retention")
async def get_retention(customer_id: str, request: Request) -> dict[str, Any]:
    policy = request.app.state.services.orchestrator.get_retention_policy(customer_id)
    return policy.to_document()


@router.put("/{customer_id}/retention")
async def set_retention(customer_id: str, body: RetentionUpdate, request: Request) -> dict[str, Any]:
    retention = request.app.state.services.retention
    if not retention.set_retention_days(customer_id, body.retentionDays):
        raise ValidationError("retentionDays must be at least 1")
    return retention.get_retention_policy(customer_id).to_document()
