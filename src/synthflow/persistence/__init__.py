"""Pluggable persistence backends behind Protocol interfaces."""

from __future__ import annotations

from synthflow.core.config import AppSettings
from synthflow.core.protocols import ICacheBackend, IDocumentStore
from synthflow.persistence.dynamodb_backend import DynamoDBDocumentStore
from synthflow.persistence.memory_backend import MemoryCacheBackend, MemoryDocumentStore
from synthflow.persistence.redis_backend import RedisCacheBackend


def create_persistence(settings: AppSettings | None = None) -> tuple[IDocumentStore, ICacheBackend]:
    """Create wired-up persistence backends from application settings.

    Returns:
        Tuple of (document_store, cache).
    """
    if settings is None:
        settings = AppSettings()

    cache: ICacheBackend
    if settings.cache_backend == "redis":
        cache = RedisCacheBackend(
            host=settings.redis.host,
            port=settings.redis.port,
            db=settings.redis.db,
            decode_responses=settings.redis.decode_responses,
        )
    else:
        cache = MemoryCacheBackend()

    store: IDocumentStore
    if settings.store_backend == "dynamodb":
        store = DynamoDBDocumentStore(
            table_name=settings.dynamodb.table_name,
            table_suffix=settings.dynamodb.table_suffix,
            region=settings.dynamodb.region,
            endpoint_url=settings.dynamodb.endpoint_url,
        )
    else:
        store = MemoryDocumentStore()

    return store, cache
