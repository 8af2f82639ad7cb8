"""
Package: delivery
Description: Event-to-webhook delivery engine.

Provides matching, signed push delivery, retry policy, the delivery
lifecycle coordinator and the workers that execute attempts.
"""

from .coordinator import DeliveryCoordinator
from .matcher import WebhookMatcher
from .push import WebhookDispatcher, compute_signature, verify_signature
from .retry import RetryScheduler
from .worker import RetrySweeper, WorkerPool

__all__ = [
    "DeliveryCoordinator",
    "WebhookMatcher",
    "WebhookDispatcher",
    "compute_signature",
    "verify_signature",
    "RetryScheduler",
    "RetrySweeper",
    "WorkerPool",
]
