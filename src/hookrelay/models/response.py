"""
Module: response.py
Description: API response models for Hook Relay.

Defines response models for the ingestion endpoint and the read-only
delivery query surface.

Key Components:
- DeliveryResponse: Delivery status and last-attempt diagnostics
- IngestEventResponse: Result of POST /events

Dependencies: pydantic, datetime, typing
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from hookrelay.models.delivery import Delivery, DeliveryStatus


class DeliveryResponse(BaseModel):
    """
    Response model for a single delivery.

    Attributes:
        delivery_id: Delivery identifier
        event_id: Delivered event
        webhook_id: Target webhook
        status: Current lifecycle state
        retry_count: Retries consumed
        max_retries: Retry budget
        response_code: Status code of the last attempt
        response_body: Capped body of the last attempt
        last_error: Classification of the last failure
        delivered_at: When the delivery succeeded
        next_attempt_at: When the next retry is due
        created_at: When the delivery was created
    """

    delivery_id: str
    event_id: str
    webhook_id: str
    status: DeliveryStatus
    retry_count: int
    max_retries: int
    response_code: Optional[int] = None
    response_body: Optional[str] = None
    last_error: Optional[str] = None
    delivered_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_delivery(cls, delivery: Delivery) -> 'DeliveryResponse':
        return cls(**delivery.model_dump(exclude={'updated_at'}))


class IngestEventResponse(BaseModel):
    """Response model for event ingestion."""

    event_id: str = Field(..., description="Ingested event identifier")
    deliveries: List[DeliveryResponse] = Field(
        default_factory=list,
        description="Deliveries fanned out for this event"
    )
    message: str = Field(default="Event accepted", description="Human-readable status message")
