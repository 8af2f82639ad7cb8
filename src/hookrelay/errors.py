"""
Module: errors.py
Description: Exception taxonomy for the delivery engine.

Dispatch failures and exhausted retry budgets are delivery outcomes and
are recorded on the Delivery, not raised. Exceptions are reserved for
conditions the caller has to act on.
"""

from typing import Optional


class HookRelayError(Exception):
    """Base class for all delivery engine errors."""


class StoreUnavailableError(HookRelayError):
    """
    The durable store could not be read or written.

    Retryable: the failed operation (ingest, attempt, sweep) is safe to
    re-drive because delivery creation is idempotent and every state
    transition is a conditional write.
    """

    retryable = True

    def __init__(self, operation: str, message: str, error_code: Optional[str] = None):
        self.operation = operation
        self.error_code = error_code
        super().__init__(f"{operation} failed: {message}")


class DeliveryNotFoundError(HookRelayError):
    """Raised by lookups on the query surface for an unknown delivery."""

    def __init__(self, delivery_id: str):
        self.delivery_id = delivery_id
        super().__init__(f"Delivery {delivery_id} not found")


class QueueUnavailableError(StoreUnavailableError):
    """The SQS work queue rejected or could not accept a work item."""
