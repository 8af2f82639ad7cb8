"""
Module: webhook.py
Description: Webhook subscription model.

Webhooks are registered by an external component; the delivery engine
only reads them, taking a snapshot at match time and again before every
attempt.
"""

from datetime import datetime, timezone
from typing import Optional, Set
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Webhook(BaseModel):
    """
    Subscriber registration for one endpoint.

    Attributes:
        webhook_id: Unique webhook identifier
        url: Endpoint receiving POSTed events
        events: Event types this webhook subscribes to
        is_active: Inactive webhooks never match
        owner_id: Registering user
        secret: HMAC signing secret for this endpoint
        created_at: Registration timestamp
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    webhook_id: str = Field(
        default_factory=lambda: f"whk_{uuid4().hex[:12]}",
        min_length=1,
        description="Unique webhook identifier"
    )
    url: str = Field(..., description="Delivery endpoint URL")
    events: Set[str] = Field(
        default_factory=set,
        description="Subscribed event types"
    )
    is_active: bool = Field(default=True, description="Whether the webhook receives events")
    owner_id: Optional[str] = Field(default=None, description="Owning user ID")
    secret: Optional[str] = Field(
        default=None,
        repr=False,
        description="HMAC-SHA256 signing secret"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Registration timestamp"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate the endpoint is an HTTP(S) URL."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError("url must be a valid HTTP/HTTPS URL")
        return v

    @model_validator(mode='after')
    def validate_active_has_events(self) -> 'Webhook':
        """An active webhook must subscribe to at least one event type."""
        if self.is_active and not self.events:
            raise ValueError("an active webhook must subscribe to at least one event type")
        return self

    def matches(self, event_type: str) -> bool:
        """Return True if this webhook should receive events of ``event_type``."""
        return self.is_active and event_type in self.events
