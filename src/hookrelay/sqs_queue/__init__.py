"""
Package: sqs_queue
Description: SQS work-item transport for delivery attempts.

Lets delivery attempts run in Lambda workers instead of the in-process
worker pool.
"""

from .sqs import SQSClient

__all__ = ["SQSClient"]
