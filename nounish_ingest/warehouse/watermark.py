"""
Per ingestion-type watermark persistence.

A watermark is the export timestamp (epoch ms) of the newest source file
whose data has been fully processed. Reading a watermark that was never
written yields 0.
"""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from nounish_ingest.core.models import IngestionType
from nounish_ingest.observability.logger import get_logger
from nounish_ingest.observability.metrics import set_gauge, watermark_timestamp_ms

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)


class WatermarkStore(ABC):
    """Durable get/set of one integer timestamp per ingestion type."""

    @abstractmethod
    def get(self, ingestion_type: IngestionType) -> int:
        """Latest processed timestamp, 0 if none was ever recorded."""

    @abstractmethod
    def set(self, ingestion_type: IngestionType, timestamp_ms: int) -> None:
        """Persist a new watermark synchronously."""

    def all(self) -> dict[IngestionType, int]:
        return {t: self.get(t) for t in IngestionType}


class FileWatermarkStore(WatermarkStore):
    """
    Stores each watermark in `<directory>/<type>_timestamp.txt`.

    Writes go to a temporary file in the same directory followed by an
    atomic rename, so a crash mid-write leaves the previous value intact.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, ingestion_type: IngestionType) -> Path:
        return self.directory / f"{ingestion_type.value}_timestamp.txt"

    def get(self, ingestion_type: IngestionType) -> int:
        path = self._path(ingestion_type)
        if not path.exists():
            return 0
        raw = path.read_text(encoding="utf-8").strip()
        try:
            return int(raw)
        except ValueError:
            logger.warning(
                f"Unreadable watermark file {path}, treating as 0",
                extra={"ingestion_type": ingestion_type.value, "raw_value": raw},
            )
            return 0

    def set(self, ingestion_type: IngestionType, timestamp_ms: int) -> None:
        path = self._path(ingestion_type)
        with self._lock:
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(str(int(timestamp_ms)))
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        set_gauge(watermark_timestamp_ms, timestamp_ms, ingestion_type=ingestion_type.value)


class PostgresWatermarkStore(WatermarkStore):
    """
    Stores watermarks in pipeline.ingestion_watermark.

    The upsert keeps the greater of the stored and new value.
    """

    def __init__(self, pool: DatabaseConnectionPool, table: str = "pipeline.ingestion_watermark"):
        self.pool = pool
        self.table = table

    def get(self, ingestion_type: IngestionType) -> int:
        rows = self.pool.execute_query(
            f"SELECT latest_timestamp_ms FROM {self.table} WHERE ingestion_type = %s",
            (ingestion_type.value,),
        )
        return int(rows[0]["latest_timestamp_ms"]) if rows else 0

    def set(self, ingestion_type: IngestionType, timestamp_ms: int) -> None:
        self.pool.execute_command(
            f"""
            INSERT INTO {self.table} AS w (ingestion_type, latest_timestamp_ms, updated_at)
            VALUES (%s, %s, now())
            ON CONFLICT (ingestion_type) DO UPDATE SET
                latest_timestamp_ms = GREATEST(w.latest_timestamp_ms, EXCLUDED.latest_timestamp_ms),
                updated_at = now()
            """,
            (ingestion_type.value, int(timestamp_ms)),
        )
        set_gauge(watermark_timestamp_ms, timestamp_ms, ingestion_type=ingestion_type.value)
