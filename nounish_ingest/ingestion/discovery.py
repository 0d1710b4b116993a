"""
Watermark-based discovery of new source files.

One pass lists every key under a type's prefix, selects the keys newer than
both the stored watermark and the run's floor, and hands each to the file
processor in listing order. The watermark only moves after a key has been
fully processed.
"""

import time
from datetime import datetime, timezone
from typing import Iterable, Protocol

from pydantic import BaseModel, Field

from nounish_ingest.config import PipelineSettings
from nounish_ingest.core.models import IngestionType
from nounish_ingest.observability.logger import get_logger
from nounish_ingest.observability.metrics import (
    discovery_duration_seconds,
    files_processed_total,
    increment_counter,
    track_duration,
)
from nounish_ingest.warehouse.watermark import WatermarkStore

from .object_lister import S3ObjectLister
from .source_keys import extract_timestamp, is_parquet_key

logger = get_logger(__name__)


class KeyProcessor(Protocol):
    def process(self, key: str, ingestion_type: IngestionType) -> None: ...


class DiscoveryResult(BaseModel):
    """Outcome of one discovery pass for one ingestion type."""

    ingestion_type: IngestionType
    seen: int = 0
    processed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: int = 0
    watermark: int = 0
    listing_error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failed and self.listing_error is None


def compute_min_time(lookback_seconds: int, now_ms: int | None = None) -> int:
    """Floor timestamp (epoch ms) for a job: now minus the type's lookback."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return now_ms - lookback_seconds * 1000


def safe_watermark(succeeded: Iterable[int], pending: Iterable[int]) -> int | None:
    """
    Newest succeeded timestamp strictly below every pending one.

    >>> safe_watermark([2000, 1000], [1500])
    1000
    >>> safe_watermark([2000], [1500]) is None
    True
    """
    floor = min(pending, default=None)
    candidates = [t for t in succeeded if floor is None or t < floor]
    return max(candidates, default=None)


def format_timestamp(timestamp_ms: int) -> str:
    if not timestamp_ms:
        return "never"
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return f"{moment.isoformat()} ({timestamp_ms})"


class FileDiscoveryLoop:
    """
    Drives discovery passes for all ingestion types.

    Example:
        >>> loop = FileDiscoveryLoop(lister, watermarks, processor, settings)
        >>> result = loop.run(IngestionType.CASTS, min_time)
    """

    def __init__(
        self,
        lister: S3ObjectLister,
        watermarks: WatermarkStore,
        processor: KeyProcessor,
        settings: PipelineSettings,
    ):
        self.lister = lister
        self.watermarks = watermarks
        self.processor = processor
        self.settings = settings

    def log_status(self, min_time: int) -> None:
        """Log the run floor and the last processed file time per type."""
        last_processed = {t.value: format_timestamp(ts) for t, ts in self.watermarks.all().items()}
        logger.info(
            "Checking for new Parquet files...",
            extra={"start_time": format_timestamp(min_time), "last_processed": last_processed},
        )

    def collect(
        self,
        ingestion_type: IngestionType,
        watermark: int,
        min_time: int,
        result: DiscoveryResult,
    ) -> list[tuple[str, int]]:
        """
        List every page under the type's prefix and keep the qualifying keys.

        A key qualifies when it is a Parquet file newer than both the
        watermark and the floor, and was not already listed in this pass.

        Returns:
            (key, timestamp) pairs in listing order

        Raises:
            Exception: Whatever the lister raised
        """
        prefix = self.settings.source(ingestion_type).prefix
        qualifying: list[tuple[str, int]] = []
        seen_keys: set[str] = set()

        for page in self.lister.iter_pages(prefix):
            for key in page.keys:
                if not is_parquet_key(key):
                    continue
                result.seen += 1

                timestamp = extract_timestamp(key)
                if timestamp <= watermark or timestamp <= min_time or key in seen_keys:
                    result.skipped += 1
                    increment_counter(files_processed_total, ingestion_type=ingestion_type.value, status="skipped")
                    continue
                seen_keys.add(key)
                qualifying.append((key, timestamp))
        return qualifying

    def run(self, ingestion_type: IngestionType, min_time: int) -> DiscoveryResult:
        """
        Run one discovery pass.

        The whole listing is read before any file is processed. Listing
        failures end the pass before processing and are reported on the
        result rather than raised. Processing failures are recorded per key
        and the pass continues with the next key.

        Keys are processed in listing order, which need not be timestamp
        order. After each success the watermark moves to the newest
        timestamp at or below which every qualifying key has succeeded, so
        a failed key is always retried by the next pass.

        Args:
            ingestion_type: Record family to discover
            min_time: Floor timestamp (epoch ms); keys at or below it are ignored

        Returns:
            DiscoveryResult summarizing the pass
        """
        prefix = self.settings.source(ingestion_type).prefix
        watermark = self.watermarks.get(ingestion_type)
        result = DiscoveryResult(ingestion_type=ingestion_type, watermark=watermark)

        logger.info(
            f"Processing {ingestion_type.value} Parquet files...",
            extra={"ingestion_type": ingestion_type.value, "prefix": prefix, "watermark": watermark},
        )

        with track_duration(discovery_duration_seconds, ingestion_type=ingestion_type.value):
            try:
                qualifying = self.collect(ingestion_type, watermark, min_time, result)
            except Exception as e:
                qualifying = []
                result.listing_error = str(e)
                logger.error(
                    f"Error listing {ingestion_type.value} Parquet files: {e}",
                    extra={"ingestion_type": ingestion_type.value, "prefix": prefix},
                    exc_info=True,
                )

            # Timestamps of keys not yet processed successfully (failed ones stay)
            pending = dict(qualifying)
            succeeded: list[int] = []

            for key, timestamp in qualifying:
                if not self._process_key(key, timestamp, ingestion_type):
                    result.failed.append(key)
                    continue

                result.processed.append(key)
                succeeded.append(timestamp)
                del pending[key]

                safe = safe_watermark(succeeded, pending.values())
                if safe is not None and safe > watermark:
                    self.watermarks.set(ingestion_type, safe)
                    watermark = safe

        result.watermark = watermark
        logger.info(
            f"Discovery pass for {ingestion_type.value} finished: "
            f"{len(result.processed)} processed, {len(result.failed)} failed, {result.skipped} skipped",
            extra={
                "ingestion_type": ingestion_type.value,
                "processed": len(result.processed),
                "failed": len(result.failed),
                "skipped": result.skipped,
                "watermark": watermark,
            },
        )
        return result

    def _process_key(self, key: str, timestamp: int, ingestion_type: IngestionType) -> bool:
        logger.info(
            f"Processing new file: {key} with timestamp {format_timestamp(timestamp)}",
            extra={"key": key, "timestamp_ms": timestamp, "ingestion_type": ingestion_type.value},
        )
        try:
            self.processor.process(key, ingestion_type)
        except Exception as e:
            increment_counter(files_processed_total, ingestion_type=ingestion_type.value, status="failure")
            logger.error(
                f"Error ingesting file {key}: {e}",
                extra={
                    "key": key,
                    "timestamp_ms": timestamp,
                    "ingestion_type": ingestion_type.value,
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return False
        increment_counter(files_processed_total, ingestion_type=ingestion_type.value, status="success")
        return True
