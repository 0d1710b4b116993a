"""
PostgreSQL connection pool for the staging and production warehouse

Wraps psycopg_pool.ConnectionPool with dict rows, transaction helpers and
the mapping of driver errors onto StoreError.
"""
import os
import time
from contextlib import contextmanager

import psycopg
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from nounish_ingest.core.errors import StoreError
from nounish_ingest.observability.logger import get_logger

logger = get_logger(__name__)

# deadlock_detected, lock_not_available, serialization_failure
RETRYABLE_SQLSTATES = frozenset({"40P01", "55P03", "40001"})


def classify_store_error(error: psycopg.Error) -> StoreError:
    """
    Wrap a driver error in a StoreError

    Lock contention and deadlocks are flagged retryable; everything else
    is not.
    """
    sqlstate = getattr(error, "sqlstate", None)
    return StoreError(
        str(error).strip() or type(error).__name__,
        retryable=sqlstate in RETRYABLE_SQLSTATES,
        sqlstate=sqlstate,
    )


def conninfo_from_env(
    host: str | None = None,
    port: int | None = None,
    database: str | None = None,
    user: str | None = None,
    password: str | None = None,
    connect_timeout: int = 30,
) -> str:
    """
    Build a libpq connection string, falling back to DB_* environment variables

    Raises:
        ValueError: If no password is given or set in DB_PASSWORD
    """
    password = password or os.getenv("DB_PASSWORD")
    if not password:
        raise ValueError(
            "Database password must be provided. "
            "Set DB_PASSWORD environment variable or pass to constructor."
        )
    return make_conninfo(
        host=host or os.getenv("DB_HOST", "localhost"),
        port=port or int(os.getenv("DB_PORT", "5432")),
        dbname=database or os.getenv("DB_NAME", "farcaster"),
        user=user or os.getenv("DB_USER", "pipeline"),
        password=password,
        connect_timeout=connect_timeout,
    )


class DatabaseConnectionPool:
    """
    Pooled psycopg3 connections returning rows as dicts

    Example:
        >>> with DatabaseConnectionPool(conninfo=url) as pool:
        ...     pool.execute_query("SELECT 1 AS one")
        [{'one': 1}]
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        conninfo: str | None = None,
        min_size: int = 1,
        max_size: int = 5,
        timeout: float = 30.0,
    ) -> None:
        """
        Args:
            host, port, database, user, password: Connection fields; each
                defaults to its DB_* environment variable
            conninfo: Full connection string or URL, used instead of the fields
            min_size: Minimum pool size
            max_size: Maximum pool size
            timeout: Seconds to wait for a connection
        """
        self.conninfo = conninfo or conninfo_from_env(
            host, port, database, user, password, connect_timeout=int(timeout)
        )
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self._pool: ConnectionPool | None = None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, retrying while the server is unreachable

        Raises:
            psycopg.OperationalError: If every attempt fails
        """
        if self._pool is not None:
            return

        pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )
        for attempt in range(1, max_retries + 1):
            try:
                pool.open(wait=True, timeout=self.timeout)
            except (psycopg.OperationalError, PoolTimeout) as e:
                if attempt == max_retries:
                    pool.close()
                    raise psycopg.OperationalError(
                        f"Failed to connect to database after {max_retries} attempts: {e}"
                    ) from e
                logger.warning(
                    f"Database not reachable (attempt {attempt}/{max_retries}), retrying in {retry_delay}s",
                    extra={"attempt": attempt, "error": str(e)},
                )
                time.sleep(retry_delay)
            else:
                self._pool = pool
                return

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection from the pool

        Raises:
            RuntimeError: If the pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")
        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self):
        """Cursor on a borrowed connection, outside any explicit transaction"""
        with self.get_connection() as conn, conn.cursor() as cur:
            yield cur

    @contextmanager
    def transaction(self):
        """
        Cursor inside one transaction

        Commits on normal exit, rolls back when the block raises. Driver
        errors surface as StoreError.
        """
        try:
            with self.get_connection() as conn, conn.transaction(), conn.cursor() as cur:
                yield cur
        except psycopg.Error as e:
            raise classify_store_error(e) from e

    def execute_query(self, query, params: tuple | dict | None = None) -> list[dict]:
        """Run a SELECT (string or psycopg.sql.Composable) and fetch every row."""
        try:
            with self.get_cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg.Error as e:
            raise classify_store_error(e) from e

    def execute_command(self, command, params: tuple | dict | None = None) -> int:
        """Run a write statement in its own transaction; returns the affected row count."""
        with self.transaction() as cur:
            cur.execute(command, params)
            return cur.rowcount

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
