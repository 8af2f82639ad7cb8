"""
Module: handlers
Description: Package initialization for API endpoint handlers.

This package contains FastAPI route handlers for Hook Relay:
- events: Event ingestion and per-event delivery lookup
- deliveries: Delivery lookup by id and per-webhook history

Handlers only adapt HTTP to the DeliveryCoordinator's plain async calls.
"""

__all__ = []
