"""Unit tests for batch partitioning."""

import pytest

from fakes import make_items
from receipt_ocr.core.exceptions import InvalidConfiguration
from receipt_ocr.pipeline.scheduler import make_batches


class TestMakeBatches:
    """Tests for make_batches."""

    @pytest.mark.parametrize(
        "count,size,expected",
        [
            (5, 2, [2, 2, 1]),
            (4, 2, [2, 2]),
            (3, 10, [3]),
            (1, 1, [1]),
            (0, 3, []),
        ],
    )
    def test_batch_sizes(self, count, size, expected):
        """Test ceil(N/B) batches, all full except possibly the last."""
        batches = make_batches(make_items(count), size)
        assert [len(b) for b in batches] == expected

    def test_concatenation_preserves_order(self):
        """Test concatenating batches reproduces the input sequence."""
        items = make_items(7)
        batches = make_batches(items, 3)

        assert [item for b in batches for item in b.items] == items
        assert [b.index for b in batches] == [0, 1, 2]

    @pytest.mark.parametrize("size", [0, -1, 1.5, True, None])
    def test_invalid_batch_size(self, size):
        """Test non-positive or non-integer sizes raise InvalidConfiguration."""
        with pytest.raises(InvalidConfiguration) as exc_info:
            make_batches(make_items(3), size)
        assert exc_info.value.field == "batch_size"
