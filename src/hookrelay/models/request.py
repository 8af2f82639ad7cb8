"""
Module: request.py
Description: Body schema for POST /events.

The event_type pattern itself is enforced by the Event model when the
coordinator builds the event; this schema only bounds sizes.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class IngestEventRequest(BaseModel):
    """
    Body of an ingestion call.

    Sending the same ``event_id`` twice creates no new deliveries.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    event_type: str = Field(..., min_length=1, max_length=100, examples=["order.created"])
    payload: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[Dict[str, Any]] = None
    event_id: Optional[str] = Field(default=None, min_length=1, max_length=128)
