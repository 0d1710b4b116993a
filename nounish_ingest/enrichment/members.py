"""
Channel-member processing.

New memberships in the cohort channels are detected by anti-joining
staging against production. Members who are cohort fids get their
existing top-level casts re-embedded so newly joined members show up in
search right away.
"""

import time

from psycopg import sql

from nounish_ingest.config import PipelineSettings
from nounish_ingest.core.models import ChannelMember, IngestionType, ProductionCast
from nounish_ingest.observability.logger import get_logger
from nounish_ingest.reference.reference_data import ReferenceData
from nounish_ingest.warehouse.connection import DatabaseConnectionPool

from .casts import CastEnrichmentEngine, parse_cast_rows

logger = get_logger(__name__)

NEW_MEMBERS_QUERY = """
    SELECT s.*
    FROM {staging} s
    LEFT JOIN {production} p ON s.id = p.id
    WHERE p.id IS NULL
    AND s.channel_id = ANY(%s)
    ORDER BY s.id
    LIMIT %s OFFSET %s
"""

MEMBER_CASTS_QUERY = """
    SELECT c.*, p.fname AS author_fname
    FROM {casts} c
    LEFT JOIN {profiles} p ON c.fid = p.fid
    WHERE c.id > %s
    AND c.fid = ANY(%s::bigint[])
    AND c.parent_hash IS NULL
    ORDER BY c.id
    LIMIT %s
"""


class CastBackfill:
    """
    Re-embeds the production casts of a set of fids.

    Casts are read with keyset pagination on id, a few fids per query.
    """

    def __init__(self, pool: DatabaseConnectionPool, engine: CastEnrichmentEngine, settings: PipelineSettings):
        self.pool = pool
        self.engine = engine
        self.page_size = settings.enrichment.backfill_page_size
        self.fids_per_query = settings.enrichment.backfill_fids_per_query
        self.query = sql.SQL(MEMBER_CASTS_QUERY).format(
            casts=sql.Identifier("production", settings.source(IngestionType.CASTS).production_table),
            profiles=sql.Identifier("production", settings.source(IngestionType.PROFILES).production_table),
        )

    def run(self, fids: list[int]) -> int:
        """
        Embed every top-level production cast of the given fids.

        Args:
            fids: Member fids (duplicates are ignored)

        Returns:
            Number of casts read
        """
        unique_fids = sorted(set(fids), reverse=True)
        logger.info(
            f"Processing casts for {len(unique_fids)} unique FIDs",
            extra={"fid_count": len(unique_fids)},
        )
        started = time.time()
        total = 0

        for i in range(0, len(unique_fids), self.fids_per_query):
            current = unique_fids[i:i + self.fids_per_query]
            last_id = 0
            while True:
                rows = self.pool.execute_query(self.query, (last_id, current, self.page_size))
                if not rows:
                    logger.debug(f"No more casts found for FIDs: {current}", extra={"fids": current})
                    break

                casts = parse_cast_rows(rows, ProductionCast)
                self.engine.embed_production_casts(casts)
                last_id = rows[-1]["id"]
                total += len(rows)
                logger.info(
                    f"Embedded {len(rows)} casts for FIDs {current}",
                    extra={"fids": current, "last_id": last_id, "total_processed": total},
                )

        logger.info(
            "Backfill complete",
            extra={"total_processed": total, "duration_seconds": round(time.time() - started, 3)},
        )
        return total


class ChannelMemberProcessor:
    """
    Finds staged cohort-channel memberships not yet in production and
    backfills cast embeddings for members who are cohort fids.
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        reference: ReferenceData,
        backfill: CastBackfill,
        settings: PipelineSettings,
    ):
        self.pool = pool
        self.reference = reference
        self.backfill = backfill
        self.channels = list(settings.enrichment.cohort_channels)
        self.page_size = settings.enrichment.staging_page_size
        source = settings.source(IngestionType.CHANNEL_MEMBERS)
        self.query = sql.SQL(NEW_MEMBERS_QUERY).format(
            staging=sql.Identifier("staging", source.staging_table),
            production=sql.Identifier("production", source.production_table),
        )

    def new_members(self) -> list[ChannelMember]:
        """Staged cohort-channel memberships whose id is absent from production."""
        members = []
        offset = 0
        while True:
            rows = self.pool.execute_query(self.query, (self.channels, self.page_size, offset))
            if not rows:
                break
            logger.info(f"Processing batch of {len(rows)} members", extra={"offset": offset})
            members.extend(ChannelMember.model_validate(row) for row in rows)
            offset += self.page_size
        return members

    def process(self) -> dict:
        """
        Returns:
            Counts of new memberships, cohort members among them and casts backfilled
        """
        members = self.new_members()
        cohort_members = [m for m in members if self.reference.is_cohort_member(m.fid)]
        backfilled = 0
        if cohort_members:
            backfilled = self.backfill.run([m.fid for m in cohort_members])
        result = {
            "new_members": len(members),
            "cohort_members": len(cohort_members),
            "casts_backfilled": backfilled,
        }
        logger.info("Channel members processed", extra=result)
        return result
