"""Shared test doubles: memory backends, manual clock, recording HTTP sender."""

from __future__ import annotations

import threading
from typing import Mapping

from synthflow.core.clock import ManualClock
from synthflow.persistence.memory_backend import MemoryCacheBackend, MemoryDocumentStore


class SentRequest:
    def __init__(self, url: str, body: bytes, headers: dict[str, str], timeout: float) -> None:
        self.url = url
        self.body = body
        self.headers = headers
        self.timeout = timeout


class RecordingHttpSender:
    """IHttpSender that records requests and answers from a per-URL script.

    `responses[url]` may be an int status code or an Exception instance to raise.
    """

    def __init__(self, responses: dict[str, int | Exception] | None = None, default: int = 200) -> None:
        self.responses = responses or {}
        self.default = default
        self.sent: list[SentRequest] = []
        self._lock = threading.Lock()

    def post(self, url: str, body: bytes, headers: Mapping[str, str], timeout: float) -> int:
        with self._lock:
            self.sent.append(SentRequest(url, body, dict(headers), timeout))
        outcome = self.responses.get(url, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def urls(self) -> list[str]:
        return sorted(r.url for r in self.sent)


__all__ = [
    "ManualClock",
    "MemoryCacheBackend",
    "MemoryDocumentStore",
    "RecordingHttpSender",
    "SentRequest",
]
