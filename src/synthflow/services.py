"""Explicit service container: one instance per process, built from settings."""

from __future__ import annotations

from dataclasses import dataclass

from synthflow.core.clock import SystemClock
from synthflow.core.config import AppSettings
from synthflow.core.protocols import ICacheBackend, IClock, IDocumentStore, IHttpSender
from synthflow.delivery.http_sender import RequestsHttpSender
from synthflow.lifecycle.orchestrator import JobOrchestrator
from synthflow.lifecycle.rate_limiter import RateLimiter
from synthflow.lifecycle.retention import RetentionPolicyStore
from synthflow.lifecycle.webhooks import WebhookDispatcher
from synthflow.persistence import create_persistence


@dataclass
class Services:
    settings: AppSettings
    store: IDocumentStore
    cache: ICacheBackend
    clock: IClock
    rate_limiter: RateLimiter
    retention: RetentionPolicyStore
    webhooks: WebhookDispatcher
    orchestrator: JobOrchestrator

    def close(self) -> None:
        self.webhooks.close()


def create_services(
    settings: AppSettings | None = None,
    *,
    store: IDocumentStore | None = None,
    cache: ICacheBackend | None = None,
    clock: IClock | None = None,
    http_sender: IHttpSender | None = None,
) -> Services:
    """Wire every component. Explicit arguments override the settings-driven defaults."""
    if settings is None:
        settings = AppSettings()
    if store is None or cache is None:
        default_store, default_cache = create_persistence(settings)
        store = default_store if store is None else store
        cache = default_cache if cache is None else cache
    clock = clock or SystemClock()
    http_sender = http_sender or RequestsHttpSender()

    rate_limiter = RateLimiter(store, clock, settings.rate_limit)
    retention = RetentionPolicyStore(store, clock, cache, settings.retention)
    webhooks = WebhookDispatcher(store, clock, http_sender, settings.webhook)
    orchestrator = JobOrchestrator(
        store=store,
        clock=clock,
        rate_limiter=rate_limiter,
        retention=retention,
        webhooks=webhooks,
    )
    return Services(
        settings=settings,
        store=store,
        cache=cache,
        clock=clock,
        rate_limiter=rate_limiter,
        retention=retention,
        webhooks=webhooks,
        orchestrator=orchestrator,
    )
