"""
Module: delivery.py
Description: Delivery data models and lifecycle state machine.

A Delivery is the unit of work for one (event, webhook) pair. Retries
mutate the same Delivery; the fan-out never creates a second one.

Key Components:
- DeliveryStatus: PENDING, RETRYING, SUCCESS, FAILED
- Delivery: Delivery record with invariant validation
- DeliveryOutcome: Result of a single dispatch attempt
- delivery_id_for(): Deterministic id for an (event, webhook) pair

Dependencies: pydantic, hashlib, datetime, enum, typing
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DeliveryStatus(str, Enum):
    """Delivery lifecycle states."""

    PENDING = "PENDING"
    RETRYING = "RETRYING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SUCCESS, DeliveryStatus.FAILED)


def delivery_id_for(event_id: str, webhook_id: str) -> str:
    """
    Derive the delivery id for an (event, webhook) pair.

    The id is stable across re-ingestion, so the store's primary key
    doubles as the pair uniqueness constraint.

    Example:
        >>> delivery_id_for("evt_abc123xyz456", "whk_000000000001")[:4]
        'dlv_'
    """
    digest = hashlib.sha256(f"{event_id}\x1f{webhook_id}".encode("utf-8")).hexdigest()
    return f"dlv_{digest[:24]}"


class DeliveryOutcome(BaseModel):
    """
    Result of exactly one dispatch attempt.

    Attributes:
        success: True for a 2xx response
        code: HTTP status code, None when no response was received
        body: Response body, truncated to the configured cap
        error_kind: None on success, ``http_<status>``, ``network`` or ``error``
        error_detail: Human-readable cause for logs
        duration_ms: Wall-clock duration of the attempt
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    code: Optional[int] = None
    body: Optional[bytes] = None
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    duration_ms: float = 0.0


class Delivery(BaseModel):
    """
    Delivery of one event to one webhook.

    Attributes:
        delivery_id: Deterministic id, see delivery_id_for()
        event_id: Delivered event
        webhook_id: Target webhook
        status: Lifecycle state
        retry_count: Retries consumed so far
        max_retries: Retry budget fixed at creation
        response_code: Status code of the last attempt
        response_body: Capped body of the last attempt
        last_error: error_kind of the last failed attempt
        delivered_at: Set iff status is SUCCESS
        next_attempt_at: Set iff status is RETRYING
        created_at: Creation timestamp
        updated_at: Timestamp of the last transition
    """

    delivery_id: str = Field(..., min_length=1)
    event_id: str = Field(..., min_length=1)
    webhook_id: str = Field(..., min_length=1)
    status: DeliveryStatus = DeliveryStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    response_code: Optional[int] = None
    response_body: Optional[str] = None
    last_error: Optional[str] = None
    delivered_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_invariants(self) -> 'Delivery':
        """Reject records that break the delivery lifecycle invariants."""
        if self.retry_count > self.max_retries:
            raise ValueError("retry_count cannot exceed max_retries")
        if (self.delivered_at is not None) != (self.status == DeliveryStatus.SUCCESS):
            raise ValueError("delivered_at must be set iff status is SUCCESS")
        if (self.next_attempt_at is not None) != (self.status == DeliveryStatus.RETRYING):
            raise ValueError("next_attempt_at must be set iff status is RETRYING")
        return self

    @classmethod
    def create(
        cls,
        event_id: str,
        webhook_id: str,
        max_retries: int,
        now: Optional[datetime] = None
    ) -> 'Delivery':
        """Build a new PENDING delivery for an (event, webhook) pair."""
        now = now or datetime.now(timezone.utc)
        return cls(
            delivery_id=delivery_id_for(event_id, webhook_id),
            event_id=event_id,
            webhook_id=webhook_id,
            status=DeliveryStatus.PENDING,
            retry_count=0,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )

    @property
    def attempt_number(self) -> int:
        """1-based number of the next (or in-flight) attempt."""
        return self.retry_count + 1

    def _evolve(self, **changes: Any) -> 'Delivery':
        if self.status.is_terminal:
            raise ValueError(f"delivery {self.delivery_id} is already {self.status.value}")
        return Delivery.model_validate({**self.model_dump(), **changes})

    def succeeded(
        self,
        now: datetime,
        response_code: Optional[int] = None,
        response_body: Optional[str] = None
    ) -> 'Delivery':
        """Return the SUCCESS state of this delivery."""
        return self._evolve(
            status=DeliveryStatus.SUCCESS,
            response_code=response_code,
            response_body=response_body,
            last_error=None,
            delivered_at=now,
            next_attempt_at=None,
            updated_at=now,
        )

    def retrying(
        self,
        now: datetime,
        next_attempt_at: datetime,
        error: str,
        response_code: Optional[int] = None,
        response_body: Optional[str] = None
    ) -> 'Delivery':
        """Return the RETRYING state, consuming one retry."""
        return self._evolve(
            status=DeliveryStatus.RETRYING,
            retry_count=self.retry_count + 1,
            response_code=response_code,
            response_body=response_body,
            last_error=error,
            next_attempt_at=next_attempt_at,
            updated_at=now,
        )

    def failed(
        self,
        now: datetime,
        error: str,
        response_code: Optional[int] = None,
        response_body: Optional[str] = None
    ) -> 'Delivery':
        """Return the terminal FAILED state."""
        return self._evolve(
            status=DeliveryStatus.FAILED,
            response_code=response_code,
            response_body=response_body,
            last_error=error,
            next_attempt_at=None,
            updated_at=now,
        )
