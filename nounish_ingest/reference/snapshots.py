"""
CSV snapshot export.

Profiles and cohort members are read from the production schema; grants
come from the separate grants database. Each file is written to a
temporary path and renamed into place so readers never see a partial
snapshot.
"""

import os
import tempfile
from pathlib import Path
from typing import Iterator

import pyarrow as pa
import pyarrow.csv as pacsv

from nounish_ingest.config import PipelineSettings
from nounish_ingest.core.errors import ReferenceDataError
from nounish_ingest.observability.logger import get_logger, log_operation
from nounish_ingest.warehouse.connection import DatabaseConnectionPool

from .reference_data import (
    CITIZEN_COLUMNS,
    CITIZENS_FILE,
    GRANT_COLUMNS,
    GRANTS_FILE,
    PROFILE_COLUMNS,
    PROFILES_FILE,
)

logger = get_logger(__name__)

PROFILES_QUERY = """
    SELECT fid, fname, verified_addresses
    FROM production.farcaster_profile
    ORDER BY fid
    LIMIT %s OFFSET %s
"""

GRANTS_QUERY = """
    SELECT id, recipient, description, "parentContract"
    FROM "public"."Grant"
    ORDER BY id
    LIMIT %s OFFSET %s
"""

CITIZENS_QUERY = """
    SELECT DISTINCT cm.fid, p.fname, cm.channel_id
    FROM production.farcaster_channel_members cm
    LEFT JOIN production.farcaster_profile p ON cm.fid = p.fid
    WHERE cm.channel_id = ANY(%s)
    AND cm.deleted_at IS NULL
    ORDER BY cm.fid, cm.channel_id
    LIMIT %s OFFSET %s
"""

GRANTS_PAGE_SIZE = 1000


def iter_paged(pool: DatabaseConnectionPool, query: str, params: tuple, page_size: int) -> Iterator[dict]:
    """Yield rows of an ORDER BY ... LIMIT/OFFSET query page by page."""
    offset = 0
    while True:
        rows = pool.execute_query(query, (*params, page_size, offset))
        if not rows:
            return
        yield from rows
        offset += page_size


def write_snapshot(path: Path, columns: list[str], rows: list[dict]) -> int:
    """
    Atomically write rows as CSV with a header.

    Returns:
        Number of data rows written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    schema = pa.schema([(c, pa.string()) for c in columns])
    table = pa.Table.from_pylist(
        [{c: ("" if row.get(c) is None else str(row[c])) for c in columns} for row in rows],
        schema=schema,
    )

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    os.close(fd)
    try:
        pacsv.write_csv(table, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return table.num_rows


class SnapshotExporter:
    """
    Writes profiles.csv, grants.csv and nounish-citizens.csv.

    Example:
        >>> exporter = SnapshotExporter(pool, settings)
        >>> exporter.ensure_snapshots_exist()
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        settings: PipelineSettings,
        grants_pool: DatabaseConnectionPool | None = None,
    ):
        """
        Args:
            pool: Warehouse pool (production schema)
            settings: Pipeline settings (data dir, cohort channels, page size)
            grants_pool: Pool for the grants database; built from
                snapshots.grants_db_url on first use when omitted
        """
        self.pool = pool
        self.settings = settings
        self.data_dir = Path(settings.snapshots.data_dir)
        self.page_size = settings.snapshots.export_page_size
        self._grants_pool = grants_pool

    def _get_grants_pool(self) -> DatabaseConnectionPool:
        if self._grants_pool is None:
            url = self.settings.snapshots.grants_db_url
            if not url:
                raise ReferenceDataError(
                    "Grants database URL is not configured. Set FLOWS_DB_URL or snapshots.grants_db_url."
                )
            self._grants_pool = DatabaseConnectionPool(conninfo=url)
            self._grants_pool.open()
        return self._grants_pool

    def close(self) -> None:
        if self._grants_pool is not None:
            self._grants_pool.close()

    def export_profiles(self) -> int:
        rows = []
        for row in iter_paged(self.pool, PROFILES_QUERY, (), self.page_size):
            addresses = row.get("verified_addresses")
            rows.append({
                "fid": row["fid"],
                "fname": row.get("fname") or "",
                "verified_addresses": "|".join(addresses) if isinstance(addresses, list) else "",
            })
        return self._write(PROFILES_FILE, PROFILE_COLUMNS, rows)

    def export_grants(self) -> int:
        rows = list(iter_paged(self._get_grants_pool(), GRANTS_QUERY, (), GRANTS_PAGE_SIZE))
        return self._write(GRANTS_FILE, GRANT_COLUMNS, rows)

    def export_citizens(self) -> int:
        channels = list(self.settings.enrichment.cohort_channels)
        rows = list(iter_paged(self.pool, CITIZENS_QUERY, (channels,), self.page_size))
        return self._write(CITIZENS_FILE, CITIZEN_COLUMNS, rows)

    def _write(self, file_name: str, columns: list[str], rows: list[dict]) -> int:
        path = self.data_dir / file_name
        count = write_snapshot(path, columns, rows)
        logger.info(
            f"Snapshot written: {path} ({count} rows)",
            extra={"file": str(path), "row_count": count},
        )
        return count

    def export_all(self) -> dict[str, int]:
        """Refresh every snapshot; returns row counts per file."""
        with log_operation("Refreshing snapshots", logger=logger, data_dir=str(self.data_dir)):
            return {
                PROFILES_FILE: self.export_profiles(),
                CITIZENS_FILE: self.export_citizens(),
                GRANTS_FILE: self.export_grants(),
            }

    def ensure_snapshots_exist(self) -> list[str]:
        """
        Export only the snapshots that are missing.

        Returns:
            Names of the files that were exported
        """
        exporters = {
            PROFILES_FILE: self.export_profiles,
            CITIZENS_FILE: self.export_citizens,
            GRANTS_FILE: self.export_grants,
        }
        exported = []
        for file_name, export in exporters.items():
            if (self.data_dir / file_name).exists():
                continue
            logger.info(f"{file_name} not found, exporting", extra={"file": file_name})
            export()
            exported.append(file_name)
        return exported
