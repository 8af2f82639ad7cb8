"""
Hook Relay: event-to-webhook delivery engine.

Records domain events and delivers them as signed HTTP callbacks to
subscribed webhooks, retrying failed deliveries with bounded backoff.
"""

__version__ = "0.1.0"
