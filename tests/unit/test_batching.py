"""
Unit tests for bounded-concurrency batch processing
"""

import threading
import time

import pytest

from reconciliation.pipeline import BatchProcessor, chunked


class TestChunked:
    def test_splits_into_batches(self):
        assert list(chunked(range(7), 3)) == [[0, 1, 2], [3, 4, 5], [6]]

    def test_empty(self):
        assert list(chunked([], 3)) == []


class TestBatchProcessor:
    """Test BatchProcessor.process"""

    def test_handles_every_item(self):
        seen = []
        lock = threading.Lock()

        def handler(batch):
            with lock:
                seen.extend(batch)

        handled = BatchProcessor(batch_size=4, concurrency=3).process(range(50), handler)

        assert handled == 50
        assert sorted(seen) == list(range(50))

    def test_concurrency_bound(self):
        """Test no more than `concurrency` batches run at once"""
        active = 0
        peak = 0
        lock = threading.Lock()

        def handler(batch):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with lock:
                active -= 1

        BatchProcessor(batch_size=1, concurrency=2).process(range(20), handler)

        assert peak <= 2

    def test_handler_error_propagates(self):
        calls = []

        def handler(batch):
            calls.append(batch)
            if batch[0] == 0:
                raise ValueError("bad batch")

        with pytest.raises(ValueError, match="bad batch"):
            BatchProcessor(batch_size=1, concurrency=1).process(range(100), handler)

        assert len(calls) < 100

    def test_source_error_propagates(self):
        def rows():
            yield 1
            raise ConnectionError("stream broken")

        with pytest.raises(ConnectionError, match="stream broken"):
            BatchProcessor(batch_size=1, concurrency=2).process(rows(), lambda batch: None)

    @pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"concurrency": 0}])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            BatchProcessor(**kwargs)
