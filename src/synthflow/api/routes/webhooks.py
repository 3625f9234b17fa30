"""Webhook registration endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(tags=["webhooks"])


@router.post("", status_code=201)
async def register_webhook(config: dict[str, Any], request: Request) -> dict[str, str]:
    webhook_id = request.app.state.services.webhooks.register(config)
    return {"id": webhook_id}


@router.delete("/{webhook_id}", status_code=204)
async def delete_webhook(webhook_id: str, request: Request) -> None:
    if not request.app.state.services.webhooks.delete_webhook(webhook_id):
        raise HTTPException(status_code=404, detail=f"Webhook {webhook_id} not found")
