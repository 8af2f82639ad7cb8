"""
Module: batch_helpers.py
Description: Keep DynamoDB batch requests inside their key limits.

Dependencies: typing
"""

from typing import Iterator, Sequence, TypeVar

T = TypeVar('T')

# BatchGetItem rejects requests with more than 100 keys
DYNAMODB_BATCH_GET_LIMIT = 100


def chunk_list(items: Sequence[T], chunk_size: int) -> Iterator[Sequence[T]]:
    """
    Yield consecutive slices of ``items`` no longer than ``chunk_size``.

    Raises:
        ValueError: If chunk_size is zero or negative

    Example:
        >>> list(chunk_list(["dlv_a", "dlv_b", "dlv_c"], 2))
        [['dlv_a', 'dlv_b'], ['dlv_c']]
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")

    for start in range(0, len(items), chunk_size):
        yield items[start:start + chunk_size]
