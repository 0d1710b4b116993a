"""
Idempotent promotion of staged rows into production tables.

Implements INSERT ... SELECT ... ON CONFLICT DO UPDATE so promoting the
same staged batch twice leaves production unchanged.
"""

import time
from typing import Callable

from psycopg import sql

from nounish_ingest.config import PipelineSettings
from nounish_ingest.core.models import IngestionType
from nounish_ingest.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .staging import DEFAULT_BACKOFF_SECONDS, DEFAULT_MAX_ATTEMPTS, run_with_retry

logger = get_logger(__name__)


PROMOTE_PROFILES = """
    INSERT INTO {production} (
        fid, fname, display_name, avatar_url, bio, verified_addresses, updated_at
    )
    SELECT DISTINCT ON (s.fid)
        s.fid,
        s.fname,
        s.display_name,
        s.avatar_url,
        s.bio,
        ARRAY(
            SELECT e.value
            FROM (SELECT COALESCE(NULLIF(s.verified_addresses, ''), '[]')::jsonb AS doc) j,
            jsonb_array_elements_text(
                CASE WHEN jsonb_typeof(j.doc) = 'array' THEN j.doc ELSE '[]'::jsonb END
            ) WITH ORDINALITY AS e(value, n)
            ORDER BY e.n
        ),
        s.updated_at
    FROM {staging} s
    ORDER BY s.fid, s.updated_at DESC
    ON CONFLICT (fid) DO UPDATE SET
        fname = EXCLUDED.fname,
        display_name = EXCLUDED.display_name,
        avatar_url = EXCLUDED.avatar_url,
        bio = EXCLUDED.bio,
        verified_addresses = EXCLUDED.verified_addresses,
        updated_at = EXCLUDED.updated_at
"""

PROMOTE_CASTS = """
    INSERT INTO {production} (
        id, created_at, updated_at, deleted_at, timestamp, fid, hash,
        parent_hash, parent_fid, parent_url, text, embeds,
        mentioned_fids, mentions_positions_array, root_parent_hash, root_parent_url
    )
    SELECT DISTINCT ON (s.id)
        s.id,
        s.created_at,
        s.updated_at,
        s.deleted_at,
        s.timestamp,
        s.fid,
        s.hash,
        s.parent_hash,
        s.parent_fid,
        s.parent_url,
        s.text,
        s.embeds,
        ARRAY(
            SELECT e.value::bigint
            FROM (SELECT COALESCE(NULLIF(s.mentions, ''), '[]')::jsonb AS doc) j,
            jsonb_array_elements_text(
                CASE WHEN jsonb_typeof(j.doc) = 'array' THEN j.doc ELSE '[]'::jsonb END
            ) WITH ORDINALITY AS e(value, n)
            ORDER BY e.n
        ),
        ARRAY(
            SELECT e.value::integer
            FROM (SELECT COALESCE(NULLIF(s.mentions_positions, ''), '[]')::jsonb AS doc) j,
            jsonb_array_elements_text(
                CASE WHEN jsonb_typeof(j.doc) = 'array' THEN j.doc ELSE '[]'::jsonb END
            ) WITH ORDINALITY AS e(value, n)
            ORDER BY e.n
        ),
        s.root_parent_hash,
        s.root_parent_url
    FROM {staging} s
    ORDER BY s.id, s.updated_at DESC
    ON CONFLICT (id) DO UPDATE SET
        updated_at = EXCLUDED.updated_at,
        deleted_at = EXCLUDED.deleted_at,
        text = EXCLUDED.text,
        embeds = EXCLUDED.embeds,
        mentioned_fids = EXCLUDED.mentioned_fids,
        mentions_positions_array = EXCLUDED.mentions_positions_array
"""

PROMOTE_CHANNEL_MEMBERS = """
    INSERT INTO {production} (
        id, created_at, updated_at, deleted_at, timestamp, fid, channel_id
    )
    SELECT DISTINCT ON (s.id)
        s.id,
        s.created_at,
        s.updated_at,
        s.deleted_at,
        s.timestamp,
        s.fid,
        s.channel_id
    FROM {staging} s
    ORDER BY s.id, s.updated_at DESC
    ON CONFLICT (id) DO UPDATE SET
        updated_at = EXCLUDED.updated_at,
        deleted_at = EXCLUDED.deleted_at
"""

PROMOTION_QUERIES = {
    IngestionType.PROFILES: PROMOTE_PROFILES,
    IngestionType.CASTS: PROMOTE_CASTS,
    IngestionType.CHANNEL_MEMBERS: PROMOTE_CHANNEL_MEMBERS,
}


class StagingPromoter:
    """
    Moves staged rows into production.

    All writes use PostgreSQL's INSERT ... ON CONFLICT UPDATE so a staged
    batch that is promoted, fails downstream and is promoted again does
    not duplicate production rows.
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        settings: PipelineSettings,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.pool = pool
        self.settings = settings
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def build_query(self, ingestion_type: IngestionType) -> sql.Composed:
        source = self.settings.source(ingestion_type)
        return sql.SQL(PROMOTION_QUERIES[ingestion_type]).format(
            production=sql.Identifier("production", source.production_table),
            staging=sql.Identifier("staging", source.staging_table),
        )

    def promote(self, ingestion_type: IngestionType) -> int:
        """
        Upsert all staged rows of a type into production.

        Args:
            ingestion_type: Record family to promote

        Returns:
            Number of production rows inserted or updated
        """
        query = self.build_query(ingestion_type)
        row_count = run_with_retry(
            f"promote {ingestion_type.value}",
            lambda: self.pool.execute_command(query),
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            sleep=self.sleep,
        )
        logger.info(
            f"Promoted {row_count} {ingestion_type.value} rows to production",
            extra={"ingestion_type": ingestion_type.value, "row_count": row_count},
        )
        return row_count
