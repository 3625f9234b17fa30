"""Webhook registration, HMAC signing, and best-effort concurrent delivery.

Delivery contract: ``POST {url}`` with the canonical JSON payload as body,
``X-Webhook-Signature`` = hex HMAC-SHA256 of exactly those bytes keyed by
the webhook's secret, ``Content-Type: application/json``, plus any custom
headers. Receivers recompute the digest with `verify_signature`.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError as PydanticValidationError

from synthflow.core.config import WebhookDeliveryConfig
from synthflow.core.exceptions import PersistenceError, WebhookValidationError
from synthflow.core.protocols import IClock, IDocumentStore, IHttpSender, QueryCondition
from synthflow.lifecycle.stages import job_progress
from synthflow.models.job import Job
from synthflow.models.webhook import (
    VALID_EVENTS,
    DeliveryStatus,
    WebhookConfig,
    WebhookDelivery,
    WebhookEvent,
    WebhookPayload,
    build_payload_data,
)

logger = logging.getLogger(__name__)

WEBHOOKS_COLLECTION = "webhooks"
DELIVERIES_COLLECTION = "webhook_deliveries"
SIGNATURE_HEADER = "X-Webhook-Signature"


def canonical_json(data: Any) -> bytes:
    """Deterministic serialization: sorted keys, no whitespace, UTF-8."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes | str, signature: str, secret: str) -> bool:
    """Constant-time check that `signature` is the HMAC-SHA256 of `payload` under `secret`."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    if not signature or not secret:
        return False
    if not signature.isascii():
        return False
    expected = sign_payload(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("ascii"))


def generate_secret() -> str:
    """256-bit random secret, hex encoded."""
    return secrets.token_hex(32)


def _validate(url: str, events: list[str]) -> None:
    if not url:
        raise WebhookValidationError("Webhook URL is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise WebhookValidationError(f"Invalid webhook URL: {url!r}")
    if not events:
        raise WebhookValidationError("At least one event type must be specified")
    invalid = [e for e in events if e not in VALID_EVENTS]
    if invalid:
        raise WebhookValidationError(f"Invalid event types: {', '.join(invalid)}", invalid)


class WebhookDispatcher:
    """Stores webhook registrations and fans job events out to them."""

    def __init__(self, store: IDocumentStore, clock: IClock, sender: IHttpSender,
                 config: WebhookDeliveryConfig | None = None) -> None:
        self._store = store
        self._clock = clock
        self._sender = sender
        self._config = config or WebhookDeliveryConfig()
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.max_workers, thread_name_prefix="webhook"
        )

    # ---- registration ----

    def register(self, config: WebhookConfig | dict[str, Any]) -> str:
        if isinstance(config, dict):
            try:
                config = WebhookConfig.model_validate(config)
            except PydanticValidationError as exc:
                raise WebhookValidationError(f"Invalid webhook config: {exc.errors()}") from exc
        _validate(config.url, config.events)

        now = self._clock.now()
        webhook_id = config.id or uuid.uuid4().hex
        stored = config.model_copy(update={
            "id": webhook_id,
            "secret": config.secret or generate_secret(),
            "active": True,
            "created_at": now,
            "updated_at": now,
        })
        self._store.create_document(WEBHOOKS_COLLECTION, stored.to_document(), document_id=webhook_id)
        logger.info("Registered webhook %s for URL %s events=%s", webhook_id, config.url, config.events)
        return webhook_id

    def get_webhook(self, webhook_id: str) -> WebhookConfig | None:
        doc = self._store.get_document(f"{WEBHOOKS_COLLECTION}/{webhook_id}")
        return WebhookConfig.from_document(doc) if doc else None

    def list_webhooks(self, customer_id: str | None = None, event: str | None = None,
                      project_id: str | None = None) -> list[WebhookConfig]:
        conditions: list[QueryCondition] = []
        if customer_id is not None:
            conditions.append(QueryCondition(field="customerId", operator="==", value=customer_id))
        if event is not None:
            conditions.append(QueryCondition(field="events", operator="array-contains", value=event))
        if project_id is not None:
            conditions.append(QueryCondition(field="projectId", operator="==", value=project_id))
        docs = self._store.query_documents(WEBHOOKS_COLLECTION, conditions)
        return [WebhookConfig.from_document(d) for d in docs]

    def update_webhook(self, webhook_id: str, **changes: Any) -> WebhookConfig:
        """Apply field changes (url, events, headers, active...). The secret is kept unless replaced."""
        current = self.get_webhook(webhook_id)
        if current is None:
            raise WebhookValidationError(f"Webhook with ID {webhook_id} not found")
        changes.pop("id", None)
        changes.pop("created_at", None)
        if changes.get("secret") is None:
            changes.pop("secret", None)
        updated = WebhookConfig.model_validate(
            {**current.model_dump(), **changes, "updated_at": self._clock.now()}
        )
        _validate(updated.url, updated.events)
        self._store.set_document(f"{WEBHOOKS_COLLECTION}/{webhook_id}", updated.to_document())
        logger.info("Updated webhook %s fields=%s", webhook_id, sorted(changes))
        return updated

    def delete_webhook(self, webhook_id: str) -> bool:
        path = f"{WEBHOOKS_COLLECTION}/{webhook_id}"
        if self._store.get_document(path) is None:
            return False
        self._store.delete_document(path)
        logger.info("Deleted webhook %s", webhook_id)
        return True

    # ---- dispatch ----

    def _matching(self, job: Job, event: str) -> list[WebhookConfig]:
        return [
            wh for wh in self.list_webhooks(customer_id=job.customer_id, event=event)
            if wh.active and (wh.project_id is None or wh.project_id == job.project_id)
        ]

    def build_payload(self, job: Job, event: str, **extra: Any) -> WebhookPayload:
        return WebhookPayload(
            event=event,
            job_id=job.id,
            timestamp=self._clock.now().isoformat(),
            customer_id=job.customer_id,
            project_id=job.project_id,
            data=build_payload_data(job, progress=job_progress(job), **extra),
        )

    def trigger(self, job: Job, event: WebhookEvent | str) -> list[Future[WebhookDelivery]]:
        """Submit deliveries to every matching webhook and return without waiting."""
        event = WebhookEvent(event).value
        webhooks = self._matching(job, event)
        if not webhooks:
            logger.debug("No webhooks registered for event %s (job %s)", event, job.id)
            return []

        body = canonical_json(self.build_payload(job, event).to_document())
        logger.info("Sending %s webhook for job %s to %d endpoints", event, job.id, len(webhooks))
        return [
            self._executor.submit(self._deliver, wh, event, job.id, body)
            for wh in webhooks
        ]

    def _deliver(self, webhook: WebhookConfig, event: str, job_id: str, body: bytes) -> WebhookDelivery:
        now = self._clock.now()
        delivery = WebhookDelivery(
            id=uuid.uuid4().hex, webhook_id=webhook.id, url=webhook.url, event=event,
            job_id=job_id, created_at=now, updated_at=now,
        )
        self._record(delivery, create=True)

        headers = {
            **webhook.headers,
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(body, webhook.secret or ""),
        }
        max_attempts = max(self._config.max_attempts, 1)
        for attempt in range(1, max_attempts + 1):
            delivery.attempts = attempt
            try:
                code = self._sender.post(webhook.url, body, headers, self._config.timeout_seconds)
            except Exception as exc:
                delivery.response_code = None
                delivery.error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "Webhook %s delivery of %s for job %s failed (attempt %d/%d): %s",
                    webhook.id, event, job_id, attempt, max_attempts, delivery.error,
                )
            else:
                delivery.response_code = code
                if 200 <= code < 300:
                    delivery.status = DeliveryStatus.DELIVERED
                    delivery.error = None
                    break
                delivery.error = f"HTTP {code}"
                logger.warning(
                    "Webhook %s returned HTTP %d for %s on job %s (attempt %d/%d)",
                    webhook.id, code, event, job_id, attempt, max_attempts,
                )
            if attempt < max_attempts:
                time.sleep(self._config.retry_backoff_seconds * attempt)

        if delivery.status != DeliveryStatus.DELIVERED:
            delivery.status = DeliveryStatus.FAILED
        delivery.updated_at = self._clock.now()
        self._record(delivery)
        return delivery

    def _record(self, delivery: WebhookDelivery, create: bool = False) -> None:
        if not self._config.record_deliveries:
            return
        try:
            if create:
                self._store.create_document(
                    DELIVERIES_COLLECTION, delivery.to_document(), document_id=delivery.id
                )
            else:
                self._store.set_document(f"{DELIVERIES_COLLECTION}/{delivery.id}", delivery.to_document())
        except PersistenceError:
            logger.exception("Could not record webhook delivery %s", delivery.id)

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
