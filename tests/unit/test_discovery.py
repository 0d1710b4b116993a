"""
Unit tests for the watermark-based discovery loop.
"""

import pytest

from conftest import FakeLister
from nounish_ingest.core.models import IngestionType
from nounish_ingest.ingestion.discovery import (
    FileDiscoveryLoop,
    compute_min_time,
    format_timestamp,
    safe_watermark,
)
from nounish_ingest.warehouse.watermark import FileWatermarkStore

CASTS = IngestionType.CASTS
PREFIX = "public-postgres/farcaster/v2/incremental/farcaster-casts"


def key(seconds: int) -> str:
    return f"{PREFIX}/farcaster-casts-0-{seconds}.parquet"


class RecordingProcessor:
    """Records processed keys and fails for the configured ones"""

    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.calls: list[str] = []

    def process(self, key: str, ingestion_type: IngestionType) -> None:
        self.calls.append(key)
        if key in self.failing:
            raise RuntimeError(f"load failed for {key}")


@pytest.fixture
def watermarks(tmp_path) -> FileWatermarkStore:
    return FileWatermarkStore(tmp_path / "timestamps")


def make_loop(pages, watermarks, settings, processor=None, error=None) -> tuple[FileDiscoveryLoop, RecordingProcessor]:
    processor = processor or RecordingProcessor()
    return FileDiscoveryLoop(FakeLister(pages, error=error), watermarks, processor, settings), processor


@pytest.mark.unit
class TestDiscoveryLoop:
    """Tests for FileDiscoveryLoop.run"""

    def test_key_at_or_below_watermark_is_skipped(self, watermarks, settings):
        watermarks.set(CASTS, 1_000_000)
        loop, processor = make_loop([[key(999), key(1000)]], watermarks, settings)

        result = loop.run(CASTS, min_time=0)

        assert processor.calls == []
        assert result.skipped == 2
        assert watermarks.get(CASTS) == 1_000_000

    def test_newer_keys_processed_and_watermark_advances(self, watermarks, settings):
        watermarks.set(CASTS, 1_000_000)
        loop, processor = make_loop([[key(999), key(1001)], [key(1002)]], watermarks, settings)

        result = loop.run(CASTS, min_time=0)

        assert processor.calls == [key(1001), key(1002)]
        assert result.processed == [key(1001), key(1002)]
        assert result.seen == 3
        assert result.ok
        assert result.watermark == 1_002_000
        assert watermarks.get(CASTS) == 1_002_000

    def test_min_time_floor(self, watermarks, settings):
        loop, processor = make_loop([[key(10), key(20), key(30)]], watermarks, settings)

        loop.run(CASTS, min_time=20_000)

        assert processor.calls == [key(30)]

    def test_non_parquet_and_unparseable_keys(self, watermarks, settings):
        pages = [[f"{PREFIX}/", f"{PREFIX}/manifest.json", f"{PREFIX}/farcaster-casts-latest.parquet", key(5)]]
        loop, processor = make_loop(pages, watermarks, settings)

        result = loop.run(CASTS, min_time=0)

        assert processor.calls == [key(5)]
        assert result.seen == 2
        assert result.skipped == 1

    def test_duplicate_listing_processed_once(self, watermarks, settings):
        loop, processor = make_loop([[key(5)], [key(5), key(6)]], watermarks, settings)

        loop.run(CASTS, min_time=0)

        assert processor.calls == [key(5), key(6)]

    def test_listing_order_is_kept(self, watermarks, settings):
        loop, processor = make_loop([[key(12), key(10), key(11)]], watermarks, settings)

        result = loop.run(CASTS, min_time=0)

        assert processor.calls == [key(12), key(10), key(11)]
        assert result.watermark == 12_000
        assert watermarks.get(CASTS) == 12_000

    def test_failure_holds_watermark_below_failed_key(self, watermarks, settings):
        processor = RecordingProcessor(failing={key(11)})
        loop, _ = make_loop([[key(10), key(11), key(12)]], watermarks, settings, processor=processor)

        result = loop.run(CASTS, min_time=0)

        assert processor.calls == [key(10), key(11), key(12)]
        assert result.processed == [key(10), key(12)]
        assert result.failed == [key(11)]
        assert not result.ok
        assert watermarks.get(CASTS) == 10_000

    def test_failed_key_is_retried_next_pass(self, watermarks, settings):
        failing = RecordingProcessor(failing={key(11)})
        loop, _ = make_loop([[key(10), key(11), key(12)]], watermarks, settings, processor=failing)
        loop.run(CASTS, min_time=0)

        retry, processor = make_loop([[key(10), key(11), key(12)]], watermarks, settings)
        result = retry.run(CASTS, min_time=0)

        assert processor.calls == [key(11), key(12)]
        assert result.ok
        assert watermarks.get(CASTS) == 12_000

    def test_out_of_order_failure_is_not_skipped(self, watermarks, settings):
        newer = f"{PREFIX}/farcaster-casts-10-2000.parquet"
        older = f"{PREFIX}/farcaster-casts-2-1500.parquet"
        pages = [[newer, older]]

        loop, _ = make_loop(pages, watermarks, settings, processor=RecordingProcessor(failing={older}))
        first = loop.run(CASTS, min_time=0)

        assert first.processed == [newer]
        assert first.failed == [older]
        assert watermarks.get(CASTS) == 0

        retry, processor = make_loop(pages, watermarks, settings)
        second = retry.run(CASTS, min_time=0)

        assert older in processor.calls
        assert second.ok
        assert watermarks.get(CASTS) == 2_000_000

    def test_listing_error_is_reported(self, watermarks, settings):
        loop, processor = make_loop([[key(1)]], watermarks, settings, error=RuntimeError("listing broke"))

        result = loop.run(CASTS, min_time=0)

        assert processor.calls == []
        assert result.listing_error == "listing broke"
        assert not result.ok
        assert watermarks.get(CASTS) == 0

    def test_other_types_untouched(self, watermarks, settings):
        loop, _ = make_loop([[key(7)]], watermarks, settings)

        loop.run(CASTS, min_time=0)

        assert watermarks.get(IngestionType.PROFILES) == 0
        assert watermarks.get(IngestionType.CHANNEL_MEMBERS) == 0


@pytest.mark.unit
class TestHelpers:
    """Tests for discovery helpers"""

    def test_compute_min_time(self):
        assert compute_min_time(600, now_ms=1_000_000) == 400_000

    def test_format_timestamp(self):
        assert format_timestamp(0) == "never"
        assert format_timestamp(1_716_400_000_000) == "2024-05-22T17:46:40+00:00 (1716400000000)"

    def test_safe_watermark(self):
        assert safe_watermark([10, 12], []) == 12
        assert safe_watermark([10, 12], [11]) == 10
        assert safe_watermark([12], [11]) is None
        assert safe_watermark([], []) is None
