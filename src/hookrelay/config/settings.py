"""
Module: settings.py
Description: Environment-driven configuration for the delivery engine.

Every field maps to an upper-case environment variable of the same name
(DELIVERY_TIMEOUT, WORK_QUEUE_URL, ...). A local .env file is read when
present. Cross-field rules are checked once, when Settings is built.
"""

import re
from typing import Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# DynamoDB allows 3-255 characters from this set
_TABLE_NAME = re.compile(r"[A-Za-z0-9_.-]{3,255}")
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application settings
    app_name: str = Field(default="Hook Relay", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    log_level: str = Field(default="INFO", description="Logging level")

    # AWS settings
    aws_region: str = Field(default="us-east-1", description="AWS region")
    stage: str = Field(default="dev", description="Deployment stage")
    dynamodb_endpoint_url: Optional[str] = Field(
        default=None,
        description="Override DynamoDB endpoint (DynamoDB Local, LocalStack)"
    )

    # DynamoDB settings
    events_table_name: str = Field(
        default="hookrelay-events",
        description="Name of the DynamoDB events table"
    )
    webhooks_table_name: str = Field(
        default="hookrelay-webhooks",
        description="Name of the DynamoDB webhooks table"
    )
    deliveries_table_name: str = Field(
        default="hookrelay-deliveries",
        description="Name of the DynamoDB deliveries table"
    )

    # SQS settings
    work_queue_url: Optional[str] = Field(
        default=None,
        description="SQS queue URL for delivery work items; in-process workers when unset"
    )

    # Delivery settings
    delivery_timeout: int = Field(
        default=10,
        ge=1,
        le=30,
        description="HTTP timeout in seconds for delivery attempts"
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Retries allowed per delivery after the initial attempt"
    )
    retry_base_delay: float = Field(
        default=1.0,
        gt=0,
        description="Base backoff delay in seconds"
    )
    retry_max_delay: float = Field(
        default=300.0,
        gt=0,
        description="Upper bound for the exponential part of the backoff in seconds"
    )
    retry_jitter: bool = Field(
        default=True,
        description="Add random jitter in [0, base] to each backoff"
    )
    response_body_limit: int = Field(
        default=65536,
        ge=0,
        description="Maximum stored response body size in bytes"
    )
    signing_secret: Optional[SecretStr] = Field(
        default=None,
        description="Fallback HMAC secret for webhooks without their own secret"
    )

    # Worker settings
    lease_ttl_seconds: int = Field(
        default=60,
        ge=1,
        description="Lifetime of a per-delivery dispatch lease"
    )
    worker_concurrency: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Number of concurrent in-process delivery workers"
    )
    sweep_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Polling interval of the retry sweep"
    )
    sweep_batch_limit: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum due retries submitted per sweep"
    )

    # Metrics settings
    metrics_enabled: bool = Field(
        default=False,
        description="Publish delivery metrics to CloudWatch"
    )
    metrics_namespace: str = Field(
        default="HookRelay",
        description="CloudWatch metrics namespace"
    )

    @field_validator('events_table_name', 'webhooks_table_name', 'deliveries_table_name')
    @classmethod
    def check_table_name(cls, v: str) -> str:
        if not _TABLE_NAME.fullmatch(v):
            raise ValueError(f"invalid DynamoDB table name: {v!r}")
        return v

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level

    @model_validator(mode='after')
    def validate_delivery_bounds(self) -> 'Settings':
        """Keep the backoff cap and lease lifetime consistent with each other."""
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        # A lease must outlive the longest possible dispatch
        if self.lease_ttl_seconds <= self.delivery_timeout:
            raise ValueError("lease_ttl_seconds must be greater than delivery_timeout")
        return self


settings = Settings()
