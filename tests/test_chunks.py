"""
Tests for intunepush.upload.chunks and intunepush.upload.retry modules.

Tests chunk planning and retry helpers including:
- Full, non-overlapping coverage of the payload
- Deterministic block ids
- Block list XML
- Status and exception classification
- Backoff formulas
"""

from __future__ import annotations

import base64
import io

import pytest
import requests

from intunepush.exceptions import ErrorKind, PackagingError, StageTimedOutError
from intunepush.settings import GiB, MiB, UploadSettings
from intunepush.upload.chunks import (
    MAX_BLOCKS,
    Chunk,
    build_block_list_xml,
    plan_chunks,
    read_chunk,
)
from intunepush.upload.retry import (
    classify_exception,
    classify_status,
    fixed_backoff,
    jittered_backoff,
)

pytestmark = pytest.mark.unit


class TestPlanChunks:
    """Tests for plan_chunks."""

    @pytest.mark.parametrize(
        "total, size, expected",
        [(0, 4, 0), (1, 4, 1), (4, 4, 1), (5, 4, 2), (14 * MiB, 6 * MiB, 3)],
    )
    def test_chunk_count(self, total, size, expected):
        """Test the number of chunks is ceil(total / size)."""
        assert len(plan_chunks(total, size)) == expected

    def test_chunks_cover_payload_exactly(self):
        """Test chunks are contiguous, non-overlapping and sum to the total."""
        chunks = plan_chunks(1000, 300)

        assert [c.offset for c in chunks] == [0, 300, 600, 900]
        assert [c.length for c in chunks] == [300, 300, 300, 100]
        assert sum(c.length for c in chunks) == 1000

    def test_block_ids_are_sequential(self):
        """Test block ids start at base64('0000') and keep equal length."""
        chunks = plan_chunks(14 * MiB, 6 * MiB)

        assert [c.sequence_id for c in chunks] == ["0000", "0001", "0002"]
        assert chunks[0].block_id == base64.b64encode(b"0000").decode()
        assert len({len(c.block_id) for c in chunks}) == 1

    def test_block_ids_are_deterministic(self):
        """Test the same plan always produces the same ids."""
        assert [c.block_id for c in plan_chunks(100, 10)] == [
            c.block_id for c in plan_chunks(100, 10)
        ]

    def test_too_many_blocks_raises(self):
        """Test more than 10,000 blocks is rejected."""
        plan_chunks(MAX_BLOCKS, 1)

        with pytest.raises(PackagingError, match="10,000"):
            plan_chunks(MAX_BLOCKS + 1, 1)

    def test_invalid_chunk_size_raises(self):
        """Test a non-positive chunk size is rejected."""
        with pytest.raises(ValueError):
            plan_chunks(10, 0)


class TestReadChunk:
    """Tests for read_chunk."""

    def test_reads_exact_slice(self):
        """Test the chunk's byte range is returned."""
        stream = io.BytesIO(b"abcdefghij")

        assert read_chunk(stream, Chunk(index=1, offset=4, length=3)) == b"efg"

    def test_short_read_raises(self):
        """Test a file shorter than planned is reported."""
        stream = io.BytesIO(b"abc")

        with pytest.raises(PackagingError, match="Short read"):
            read_chunk(stream, Chunk(index=0, offset=0, length=10))


class TestBlockListXml:
    """Tests for build_block_list_xml."""

    def test_xml_keeps_order(self):
        """Test ids appear as Latest elements in the given order."""
        xml = build_block_list_xml(["MDAwMA==", "MDAwMQ=="])

        assert xml == (
            '<?xml version="1.0" encoding="utf-8"?><BlockList>'
            "<Latest>MDAwMA==</Latest><Latest>MDAwMQ==</Latest></BlockList>"
        )


class TestChunkSizeSelection:
    """Tests for UploadSettings.chunk_size_for."""

    def test_default_chunk_size(self):
        """Test files up to 5 GiB use 6 MiB chunks."""
        assert UploadSettings().chunk_size_for(5 * GiB) == 6 * MiB

    def test_large_file_chunk_size(self):
        """Test files over 5 GiB use 4 MiB chunks."""
        assert UploadSettings().chunk_size_for(5 * GiB + 1) == 4 * MiB


class TestClassification:
    """Tests for the retry classifiers."""

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409])
    def test_client_errors_are_permanent(self, status):
        """Test 4xx statuses abort immediately."""
        assert classify_status(status) is ErrorKind.PERMANENT

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        """Test 408, 429 and 5xx are retried."""
        assert classify_status(status) is ErrorKind.TRANSIENT

    def test_transport_errors_are_transient(self):
        """Test timeouts and connection errors are retried."""
        assert classify_exception(requests.exceptions.ReadTimeout()) is ErrorKind.TRANSIENT
        assert classify_exception(requests.exceptions.ConnectionError()) is ErrorKind.TRANSIENT

    def test_invalid_url_is_permanent(self):
        """Test malformed URLs are not retried."""
        assert classify_exception(requests.exceptions.InvalidURL()) is ErrorKind.PERMANENT

    def test_library_errors_keep_their_kind(self):
        """Test intunepush exceptions are classified by their own kind."""
        err = StageTimedOutError("slow", stage="CommitFile")

        assert classify_exception(err) is ErrorKind.TIMEOUT


class TestBackoff:
    """Tests for backoff formulas."""

    def test_jittered_backoff_range(self):
        """Test jitter adds between 0 and 100% of the base delay."""
        assert jittered_backoff(3, 2.0, rand=lambda: 0.0) == 8.0
        assert jittered_backoff(3, 2.0, rand=lambda: 0.5) == 12.0

    def test_fixed_backoff(self):
        """Test fixed backoff doubles per attempt."""
        assert [fixed_backoff(n, 2.0) for n in (1, 2, 3)] == [4.0, 8.0, 16.0]
