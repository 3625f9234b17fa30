"""DynamoDB backend implementing IDocumentStore on a single PK/SK table.

Every document lives in one item: PK is the collection path
(``projects/p1/jobs``), SK the document id, and the document's fields are
stored as top-level attributes next to the keys. CG carries the last
segment of the collection path (``jobs``) so the ``collection-group-index``
GSI can answer queries across every parent document.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from functools import reduce
from typing import Any, Mapping, Sequence

import boto3
from boto3.dynamodb.conditions import Attr, ConditionBase, Key
from botocore.exceptions import ClientError

from synthflow.core.exceptions import (
    ConcurrencyConflictError,
    DocumentExistsError,
    DocumentNotFoundError,
    PersistenceError,
)
from synthflow.core.protocols import QueryCondition

logger = logging.getLogger(__name__)

_KEY_FIELDS = ("PK", "SK", "CG")
COLLECTION_GROUP_INDEX = "collection-group-index"


def _decode(value: Any) -> Any:
    """Convert DynamoDB Decimals back into int/float, recursively."""
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, dict):
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_decode(v) for v in value]
    return value


def _encode(value: Any) -> Any:
    """Convert floats to Decimal for DynamoDB, recursively."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _split(path: str) -> tuple[str, str]:
    if "/" not in path:
        raise PersistenceError(f"Not a document path: {path!r}")
    collection, doc_id = path.rsplit("/", 1)
    return collection, doc_id


def _keys(collection: str, doc_id: str) -> dict[str, str]:
    return {"PK": collection, "SK": doc_id, "CG": collection.rsplit("/", 1)[-1]}


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _condition(cond: QueryCondition) -> ConditionBase:
    attr = Attr(cond.field)
    value = _encode(cond.value)
    op = cond.operator
    if op == "==":
        return attr.eq(value)
    if op == "!=":
        return attr.exists() & attr.ne(value)
    if op == "<":
        return attr.lt(value)
    if op == "<=":
        return attr.lte(value)
    if op == ">":
        return attr.gt(value)
    if op == ">=":
        return attr.gte(value)
    if op == "array-contains":
        return attr.contains(value)
    if op == "array-contains-any":
        return reduce(lambda a, b: a | b, [attr.contains(v) for v in value])
    if op == "in":
        return attr.is_in(list(value))
    if op == "not-in":
        return attr.exists() & ~attr.is_in(list(value))
    raise PersistenceError(f"Unsupported query operator {op!r}")


class DynamoDBDocumentStore:
    """Production IDocumentStore backed by DynamoDB conditional writes."""

    def __init__(self, table_name: str = "synthflow-documents", table_suffix: str = "",
                 region: str = "us-east-1", endpoint_url: str | None = None) -> None:
        self._table_name = f"{table_name}{table_suffix}"
        self._region = region
        self._endpoint_url = endpoint_url
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._ddb = boto3.resource("dynamodb", **kwargs)
        self._table = self._ddb.Table(self._table_name)

    @staticmethod
    def _to_document(item: dict[str, Any]) -> dict[str, Any]:
        return {k: _decode(v) for k, v in item.items() if k not in _KEY_FIELDS}

    # ---- IDocumentStore methods ----

    def create_document(
        self, collection_path: str, data: dict[str, Any], document_id: str | None = None
    ) -> str:
        doc_id = document_id or uuid.uuid4().hex
        item = {**_encode(data), **_keys(collection_path, doc_id)}
        try:
            self._table.put_item(Item=item, ConditionExpression="attribute_not_exists(PK)")
        except ClientError as exc:
            if _is_conditional_failure(exc):
                raise DocumentExistsError(f"{collection_path}/{doc_id}") from exc
            raise PersistenceError(f"DynamoDB create failed for {collection_path!r}: {exc}") from exc
        return doc_id

    def get_document(self, path: str) -> dict[str, Any] | None:
        collection, doc_id = _split(path)
        try:
            resp = self._table.get_item(Key={"PK": collection, "SK": doc_id}, ConsistentRead=True)
        except ClientError as exc:
            raise PersistenceError(f"DynamoDB get failed for {path!r}: {exc}") from exc
        item = resp.get("Item")
        return self._to_document(item) if item else None

    def set_document(self, path: str, data: dict[str, Any]) -> None:
        collection, doc_id = _split(path)
        try:
            self._table.put_item(Item={**_encode(data), **_keys(collection, doc_id)})
        except ClientError as exc:
            raise PersistenceError(f"DynamoDB put failed for {path!r}: {exc}") from exc

    def update_document(
        self,
        path: str,
        data: dict[str, Any],
        *,
        precondition: Mapping[str, Any] | None = None,
    ) -> None:
        collection, doc_id = _split(path)
        fields = {k: v for k, v in data.items() if k not in _KEY_FIELDS}
        if not fields:
            return

        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        assignments = []
        for i, (field, value) in enumerate(fields.items()):
            names[f"#f{i}"] = field
            values[f":v{i}"] = _encode(value)
            assignments.append(f"#f{i} = :v{i}")

        condition = "attribute_exists(PK)"
        for i, (field, expected) in enumerate((precondition or {}).items()):
            names[f"#p{i}"] = field
            values[f":p{i}"] = _encode(expected)
            condition += f" AND #p{i} = :p{i}"

        try:
            self._table.update_item(
                Key={"PK": collection, "SK": doc_id},
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as exc:
            if not _is_conditional_failure(exc):
                raise PersistenceError(f"DynamoDB update failed for {path!r}: {exc}") from exc
            if self.get_document(path) is None:
                raise DocumentNotFoundError(path) from exc
            logger.debug("Conditional update lost on %s precondition=%s", path, precondition)
            raise ConcurrencyConflictError(f"Precondition failed on {path!r}") from exc

    def delete_document(self, path: str) -> None:
        collection, doc_id = _split(path)
        try:
            self._table.delete_item(Key={"PK": collection, "SK": doc_id})
        except ClientError as exc:
            raise PersistenceError(f"DynamoDB delete failed for {path!r}: {exc}") from exc

    def query_documents(
        self, collection_path: str, conditions: Sequence[QueryCondition] = ()
    ) -> list[dict[str, Any]]:
        return self._query(
            collection_path, conditions,
            KeyConditionExpression=Key("PK").eq(collection_path),
            ConsistentRead=True,
        )

    def query_collection_group(
        self, collection_id: str, conditions: Sequence[QueryCondition] = ()
    ) -> list[dict[str, Any]]:
        # GSIs do not support consistent reads
        return self._query(
            collection_id, conditions,
            IndexName=COLLECTION_GROUP_INDEX,
            KeyConditionExpression=Key("CG").eq(collection_id),
        )

    def _query(
        self, target: str, conditions: Sequence[QueryCondition], **kwargs: Any
    ) -> list[dict[str, Any]]:
        if conditions:
            kwargs["FilterExpression"] = reduce(lambda a, b: a & b, [_condition(c) for c in conditions])

        docs: list[dict[str, Any]] = []
        try:
            while True:
                resp = self._table.query(**kwargs)
                docs.extend(self._to_document(item) for item in resp.get("Items", []))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except ClientError as exc:
            raise PersistenceError(f"DynamoDB query failed for {target!r}: {exc}") from exc
        return docs
