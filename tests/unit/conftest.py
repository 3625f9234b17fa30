"""Unit test fixtures: a fully wired service container on memory backends."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from synthflow.core.config import AppSettings
from synthflow.services import create_services
from tests.fakes import ManualClock, MemoryCacheBackend, MemoryDocumentStore, RecordingHttpSender

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def cache():
    return MemoryCacheBackend()


@pytest.fixture
def sender():
    return RecordingHttpSender()


@pytest.fixture
def services(store, cache, clock, sender):
    svc = create_services(AppSettings(), store=store, cache=cache, clock=clock, http_sender=sender)
    yield svc
    svc.close()
