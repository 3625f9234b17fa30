"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class DynamoDBConfig(BaseSettings):
    """DynamoDB document table configuration."""

    model_config = {"env_prefix": "SYNTHFLOW_DYNAMO_"}

    table_name: str = "synthflow-documents"
    table_suffix: str = ""  # "-dev", "-uat", or "" for prod
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class RedisConfig(BaseSettings):
    """Redis cache configuration."""

    model_config = {"env_prefix": "SYNTHFLOW_REDIS_"}

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    decode_responses: bool = True


class RateLimitConfig(BaseSettings):
    """Per-customer concurrency limits and cancellation cooldown."""

    model_config = {"env_prefix": "SYNTHFLOW_RATE_LIMIT_"}

    max_jobs: int = 5
    cooldown_period_seconds: int = 45
    max_update_attempts: int = 5


class RetentionConfig(BaseSettings):
    """Job history retention defaults."""

    model_config = {"env_prefix": "SYNTHFLOW_RETENTION_"}

    default_retention_days: int = 180
    project_retention_days: int = 30
    cache_ttl_seconds: int = 300


class WebhookDeliveryConfig(BaseSettings):
    """Outbound webhook delivery settings."""

    model_config = {"env_prefix": "SYNTHFLOW_WEBHOOK_"}

    timeout_seconds: float = 10.0
    max_workers: int = 8
    max_attempts: int = 1  # 1 = no retry
    retry_backoff_seconds: float = 1.0
    record_deliveries: bool = True


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "SYNTHFLOW_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"
    store_backend: Literal["memory", "dynamodb"] = "memory"
    cache_backend: Literal["memory", "redis"] = "memory"

    dynamodb: DynamoDBConfig = DynamoDBConfig()
    redis: RedisConfig = RedisConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    retention: RetentionConfig = RetentionConfig()
    webhook: WebhookDeliveryConfig = WebhookDeliveryConfig()
