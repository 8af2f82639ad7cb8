"""
Module: event.py
Description: Event data model for Hook Relay.

Defines the immutable Event record that the delivery engine fans out to
subscribed webhooks. Events are written once at ingestion and only read
afterwards.

Key Components:
- Event: Immutable ingested event
- generate_event_id(): evt_ prefixed identifier factory
- Validation: Pydantic v2 with custom field validators

Dependencies: pydantic, datetime, typing, uuid
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def generate_event_id() -> str:
    """Generate a unique event identifier (evt_ + 12 hex chars)."""
    return f"evt_{uuid4().hex[:12]}"


class Event(BaseModel):
    """
    Event model representing an ingested domain event.

    Events are owned by the ingesting caller. The engine persists them
    once and references them from every Delivery created for them.

    Attributes:
        event_id: Unique event identifier (generated or caller supplied)
        event_type: Type of event (e.g., 'order.created')
        payload: Event data payload (flexible JSON object)
        metadata: Optional metadata (source, custom fields)
        created_at: Timestamp when the event was ingested
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        frozen=True
    )

    event_id: str = Field(
        default_factory=generate_event_id,
        min_length=1,
        max_length=128,
        pattern=r"^[A-Za-z0-9_.:-]+$",
        description="Unique event identifier"
    )
    event_type: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Event type identifier"
    )
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="Event payload data"
    )
    metadata: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Optional event metadata"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Event creation timestamp"
    )

    @field_validator('event_type')
    @classmethod
    def validate_event_type(cls, v: str) -> str:
        """Validate event type follows naming conventions."""
        # Allow lowercase letters, numbers, dots, and underscores
        if not re.match(r'^[a-z0-9._]+$', v):
            raise ValueError(
                "event_type must contain only lowercase letters, numbers, dots, and underscores"
            )
        return v

    @field_validator('payload', mode='before')
    @classmethod
    def validate_payload(cls, v: Any) -> Dict[str, Any]:
        """Validate payload is a JSON object, preserving all JSON types."""
        if not isinstance(v, dict):
            raise ValueError("payload must be a dictionary")
        return v

    @field_validator('created_at')
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Normalize naive timestamps to UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)
