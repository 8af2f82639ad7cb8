"""
Module: storage
Description: Package initialization for data persistence layer.

This package contains the store used by the delivery engine:
- base: DeliveryStore protocol consumed by the engine
- dynamodb: DynamoDB implementation with conditional writes
"""

from .base import DeliveryStore
from .dynamodb import DynamoDBDeliveryStore

__all__ = ["DeliveryStore", "DynamoDBDeliveryStore"]
