"""In-memory backends for unit tests and local development: dict-backed fakes."""

from __future__ import annotations

import copy
import threading
import uuid
from typing import Any, Mapping, Sequence

from synthflow.core.exceptions import (
    ConcurrencyConflictError,
    DocumentExistsError,
    DocumentNotFoundError,
    PersistenceError,
)
from synthflow.core.protocols import QueryCondition

_MISSING = object()


def _lookup(doc: Mapping[str, Any], field: str) -> Any:
    """Resolve a dotted field path; returns _MISSING when any segment is absent."""
    current: Any = doc
    for part in field.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def matches(doc: Mapping[str, Any], cond: QueryCondition) -> bool:
    """Evaluate one QueryCondition against a document (Firestore semantics)."""
    actual = _lookup(doc, cond.field)
    op, expected = cond.operator, cond.value

    if op == "!=":
        return actual is not _MISSING and actual != expected
    if op == "not-in":
        return actual is not _MISSING and actual not in expected
    if actual is _MISSING:
        return False
    if op == "==":
        return actual == expected
    if op == "in":
        return actual in expected
    if op == "array-contains":
        return isinstance(actual, list) and expected in actual
    if op == "array-contains-any":
        return isinstance(actual, list) and any(v in actual for v in expected)
    try:
        if op == "<":
            return actual < expected
        if op == "<=":
            return actual <= expected
        if op == ">":
            return actual > expected
        if op == ">=":
            return actual >= expected
    except TypeError:
        return False
    raise PersistenceError(f"Unsupported query operator {op!r}")


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


class MemoryDocumentStore:
    """Dict-backed IDocumentStore. Every operation runs under one lock."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create_document(
        self, collection_path: str, data: dict[str, Any], document_id: str | None = None
    ) -> str:
        doc_id = document_id or uuid.uuid4().hex
        path = f"{collection_path}/{doc_id}"
        with self._lock:
            if path in self._docs:
                raise DocumentExistsError(path)
            self._docs[path] = copy.deepcopy(data)
        return doc_id

    def get_document(self, path: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self._docs.get(path)
            return copy.deepcopy(doc) if doc is not None else None

    def set_document(self, path: str, data: dict[str, Any]) -> None:
        with self._lock:
            self._docs[path] = copy.deepcopy(data)

    def update_document(
        self,
        path: str,
        data: dict[str, Any],
        *,
        precondition: Mapping[str, Any] | None = None,
    ) -> None:
        with self._lock:
            current = self._docs.get(path)
            if current is None:
                raise DocumentNotFoundError(path)
            for field, expected in (precondition or {}).items():
                if current.get(field) != expected:
                    raise ConcurrencyConflictError(
                        f"Precondition failed on {path!r}: {field}={current.get(field)!r}, "
                        f"expected {expected!r}"
                    )
            current.update(copy.deepcopy(data))

    def delete_document(self, path: str) -> None:
        with self._lock:
            self._docs.pop(path, None)

    def query_documents(
        self, collection_path: str, conditions: Sequence[QueryCondition] = ()
    ) -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for path, doc in self._docs.items()
                if _parent(path) == collection_path and all(matches(doc, c) for c in conditions)
            ]

    def query_collection_group(
        self, collection_id: str, conditions: Sequence[QueryCondition] = ()
    ) -> list[dict[str, Any]]:
        """Query every collection named `collection_id`, whatever its parent document."""
        with self._lock:
            return [
                copy.deepcopy(doc)
                for path, doc in self._docs.items()
                if _parent(path).rsplit("/", 1)[-1] == collection_id
                and all(matches(doc, c) for c in conditions)
            ]


class MemoryCacheBackend:
    """Dict-backed ICacheBackend for unit tests."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = value

    def delete(self, key: str) -> None:
        self._store.pop(key, None)
