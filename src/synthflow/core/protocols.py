"""Protocol interfaces for all Synthflow abstractions.

All inter-layer communication uses these Protocols: structural typing,
no inheritance required, easy to test with isinstance().
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Mapping, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel

QueryOperator = Literal[
    "==", "<", "<=", ">", ">=", "!=",
    "array-contains", "array-contains-any", "in", "not-in",
]


class QueryCondition(BaseModel):
    """Single filter clause for IDocumentStore.query_documents."""

    model_config = {"frozen": True}

    field: str
    operator: QueryOperator
    value: Any


# ---------------------------------------------------------------------------
# Persistence: Document Store
# ---------------------------------------------------------------------------

@runtime_checkable
class IDocumentStore(Protocol):
    """Path-addressed document store (collection/doc/collection/doc...)."""

    def create_document(
        self, collection_path: str, data: dict[str, Any], document_id: str | None = None
    ) -> str: ...

    def get_document(self, path: str) -> dict[str, Any] | None: ...

    def set_document(self, path: str, data: dict[str, Any]) -> None: ...

    def update_document(
        self,
        path: str,
        data: dict[str, Any],
        *,
        precondition: Mapping[str, Any] | None = None,
    ) -> None: ...

    def delete_document(self, path: str) -> None: ...

    def query_documents(
        self, collection_path: str, conditions: Sequence[QueryCondition] = ()
    ) -> list[dict[str, Any]]: ...

    def query_collection_group(
        self, collection_id: str, conditions: Sequence[QueryCondition] = ()
    ) -> list[dict[str, Any]]: ...


# ---------------------------------------------------------------------------
# Persistence: Cache Backend
# ---------------------------------------------------------------------------

@runtime_checkable
class ICacheBackend(Protocol):
    """Redis-compatible cache interface."""

    def get(self, key: str) -> str | None: ...

    def setex(self, key: str, ttl: int, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Delivery: HTTP sender
# ---------------------------------------------------------------------------

@runtime_checkable
class IHttpSender(Protocol):
    """Outbound HTTP POST used for webhook delivery. Returns the status code."""

    def post(self, url: str, body: bytes, headers: Mapping[str, str], timeout: float) -> int: ...


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

@runtime_checkable
class IClock(Protocol):
    """Source of timezone-aware UTC timestamps."""

    def now(self) -> datetime: ...
