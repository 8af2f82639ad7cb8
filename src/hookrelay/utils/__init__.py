"""
Module: utils
Description: Package initialization for utility functions.

This package contains shared helpers used throughout Hook Relay:
- logger: Structured logging configuration and helpers
- metrics: CloudWatch metrics publishing
- batch_helpers: Chunking for DynamoDB batch calls
"""

__all__ = []
