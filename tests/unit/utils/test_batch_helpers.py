"""
Module: test_batch_helpers.py
Description: Unit tests for DynamoDB batch chunking.
"""

import pytest

from hookrelay.utils.batch_helpers import DYNAMODB_BATCH_GET_LIMIT, chunk_list


class TestChunkList:
    """Test cases for chunk_list."""

    def test_last_chunk_holds_remainder(self):
        ids = [f"dlv_{i}" for i in range(250)]

        chunks = list(chunk_list(ids, DYNAMODB_BATCH_GET_LIMIT))

        assert [len(c) for c in chunks] == [100, 100, 50]
        assert [i for c in chunks for i in c] == ids

    def test_empty_input(self):
        assert list(chunk_list([], 10)) == []

    @pytest.mark.parametrize("size", [0, -3])
    def test_non_positive_size_rejected(self, size):
        with pytest.raises(ValueError):
            list(chunk_list(["dlv_a"], size))
