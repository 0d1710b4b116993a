"""
Bulk loading of source Parquet files into staging tables.

Each load is one transaction: a COPY that fails part-way leaves no rows
behind, so a re-run of the same key stages the same row count. Transient
lock/deadlock errors are retried a bounded number of times.
"""

import time
from typing import Callable, TypeVar

from psycopg import sql

from nounish_ingest.config import PipelineSettings
from nounish_ingest.core.errors import StoreError
from nounish_ingest.core.models import IngestionType
from nounish_ingest.observability.logger import get_logger
from nounish_ingest.observability.metrics import increment_counter, retries_total, staged_rows_total

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 2.0


def run_with_retry(
    operation: str,
    fn: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying retryable StoreErrors with a fixed backoff.

    Args:
        operation: Name used in logs and metrics
        fn: Zero-argument callable performing one complete transaction
        max_attempts: Total attempts including the first
        backoff_seconds: Fixed delay between attempts
        sleep: Delay function (injectable for tests)

    Returns:
        Whatever fn returns

    Raises:
        StoreError: Non-retryable errors immediately, retryable ones once
            attempts are exhausted
    """
    attempt = 1
    while True:
        try:
            return fn()
        except StoreError as e:
            if not e.retryable:
                raise
            if attempt >= max_attempts:
                increment_counter(retries_total, operation=operation, status="exhausted")
                logger.error(
                    f"Giving up on {operation} after {attempt} attempts",
                    extra={"operation": operation, "sqlstate": e.sqlstate, "attempts": attempt},
                )
                raise
            increment_counter(retries_total, operation=operation, status="retrying")
            logger.warning(
                f"Transient store error during {operation}, retrying "
                f"({max_attempts - attempt} attempts remaining)",
                extra={"operation": operation, "sqlstate": e.sqlstate, "attempt": attempt},
            )
            sleep(backoff_seconds)
            attempt += 1


class StagingLoader:
    """
    Copies one source file into its staging table.

    Uses the server-side Parquet COPY (`COPY ... FROM 's3://...' WITH
    (format 'parquet')`) so file bytes never pass through this process.
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        settings: PipelineSettings,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize staging loader.

        Args:
            pool: Database connection pool
            settings: Pipeline settings (bucket and staging table names)
            max_attempts: Total attempts on deadlock/lock errors
            backoff_seconds: Fixed delay between attempts
            sleep: Delay function (injectable for tests)
        """
        self.pool = pool
        self.settings = settings
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def staging_table(self, ingestion_type: IngestionType) -> sql.Identifier:
        return sql.Identifier("staging", self.settings.source(ingestion_type).staging_table)

    def source_url(self, key: str) -> str:
        return f"s3://{self.settings.bucket}/{key}"

    def load(self, key: str, ingestion_type: IngestionType) -> int:
        """
        Bulk-append a source file into staging.

        Args:
            key: Object key of the Parquet file
            ingestion_type: Record family of the file

        Returns:
            Number of rows copied

        Raises:
            StoreError: If the copy fails (after retries for transient errors)
        """
        copy_command = sql.SQL("COPY {table} FROM {url} WITH (format 'parquet')").format(
            table=self.staging_table(ingestion_type),
            url=sql.Literal(self.source_url(key)),
        )

        def _copy() -> int:
            with self.pool.transaction() as cur:
                cur.execute(copy_command)
                return cur.rowcount

        row_count = run_with_retry(
            f"load {ingestion_type.value}",
            _copy,
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            sleep=self.sleep,
        )

        increment_counter(staged_rows_total, max(row_count, 0), ingestion_type=ingestion_type.value)
        logger.info(
            f"Ingested {row_count} new rows from file: {key}",
            extra={"key": key, "ingestion_type": ingestion_type.value, "row_count": row_count},
        )
        return row_count

    def truncate(self, ingestion_type: IngestionType) -> None:
        """Empty the staging table once its rows are fully processed."""
        table = self.staging_table(ingestion_type)
        run_with_retry(
            f"truncate {ingestion_type.value}",
            lambda: self.pool.execute_command(sql.SQL("TRUNCATE TABLE {} CASCADE").format(table)),
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            sleep=self.sleep,
        )
        logger.info(
            f"Staging table {self.settings.source(ingestion_type).staging_table} truncated",
            extra={"ingestion_type": ingestion_type.value},
        )
