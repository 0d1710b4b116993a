"""
Cast enrichment and fan-out.

Staged casts are filtered to top-level posts in the allowed channels or by
cohort members, their text is rebuilt with mentions and normalized, and two
streams are dispatched to the queue: embedding jobs and grant-update
classification requests.
"""

from typing import TypeVar

from psycopg import sql
from pydantic import BaseModel, Field, ValidationError

from nounish_ingest.config import PipelineSettings
from nounish_ingest.core.errors import MentionDataError
from nounish_ingest.core.models import (
    CastRecord,
    GrantUpdatePayload,
    IngestionType,
    JobPayload,
    ProductionCast,
    StagingCast,
)
from nounish_ingest.observability.logger import get_logger
from nounish_ingest.observability.metrics import (
    increment_counter,
    payloads_dispatched_total,
    records_rejected_total,
)
from nounish_ingest.reference.reference_data import ReferenceData
from nounish_ingest.sink.queue_client import EmbeddingsQueueClient
from nounish_ingest.warehouse.connection import DatabaseConnectionPool

from .embeds import get_cast_embed_urls
from .grants import build_grant_update_payloads
from .payloads import add_mention_tags, batched, create_base_payload, finalize_payload, is_empty_payload
from .text import clean_text_for_embedding, insert_mentions

logger = get_logger(__name__)

CastT = TypeVar("CastT", bound=CastRecord)

STAGING_CASTS_QUERY = """
    SELECT c.*, p.fname AS author_fname
    FROM {staging} c
    LEFT JOIN {profiles} p ON c.fid = p.fid
    WHERE c.parent_hash IS NULL
    ORDER BY c.id
    LIMIT %s OFFSET %s
"""


def parse_cast_rows(rows: list[dict], model: type[CastT]) -> list[CastT]:
    """
    Validate warehouse rows into cast records.

    Malformed rows are logged, counted as rejected and left out; the
    remaining rows are returned in order.
    """
    casts = []
    for row in rows:
        try:
            casts.append(model.model_validate(row))
        except ValidationError as e:
            increment_counter(records_rejected_total, reason="invalid_row")
            logger.warning(
                f"Rejecting malformed cast row {row.get('id')}",
                extra={"cast_id": row.get("id"), "errors": e.errors(include_url=False)},
            )
    return casts


class EnrichedBatch(BaseModel):
    """Payloads derived from one page of casts."""

    jobs: list[JobPayload] = Field(default_factory=list)
    grant_updates: list[GrantUpdatePayload] = Field(default_factory=list)
    eligible: int = 0
    rejected: int = 0


class CastEnrichmentEngine:
    """
    Turns cast rows into queue payloads and dispatches them.

    Example:
        >>> engine = CastEnrichmentEngine(reference, queue, settings)
        >>> engine.process_staging(pool)
    """

    def __init__(self, reference: ReferenceData, queue: EmbeddingsQueueClient, settings: PipelineSettings):
        """
        Args:
            reference: Profiles, grants and cohort lookups for this run
            queue: Outbound queue client
            settings: Pipeline settings (allow-list, batch sizes, table names)
        """
        self.reference = reference
        self.queue = queue
        self.settings = settings
        self.enrichment = settings.enrichment
        self._allowed_urls = frozenset(self.enrichment.allowed_root_parent_urls)

    def is_eligible(self, cast: CastRecord) -> bool:
        """Top-level casts in an allowed channel or by a cohort member."""
        if cast.is_reply:
            return False
        if cast.root_parent_url and cast.root_parent_url in self._allowed_urls:
            return True
        return self.reference.is_cohort_member(cast.fid)

    def reconstruct_text(self, cast: CastRecord) -> str:
        """
        Cleaned cast text with mentions inlined.

        Raises:
            MentionDataError: If the mention arrays are malformed
        """
        text = insert_mentions(cast.text, cast.mention_pairs(), self.reference.fid_to_fname)
        return clean_text_for_embedding(text)

    def embed_urls(self, cast: CastRecord) -> list[str]:
        return get_cast_embed_urls(cast.embeds, self.reference.fid_to_fname, self.enrichment.permalink_host)

    def build_job_payload(self, cast: CastRecord, content: str, urls: list[str]) -> JobPayload | None:
        """Embedding job for a cast, or None when there is nothing to embed."""
        payload = create_base_payload(cast, content, self.reference, self.enrichment.permalink_host)
        payload.urls = list(urls)
        add_mention_tags(payload, cast.mentioned_fids(), self.reference)
        finalize_payload(payload)
        if is_empty_payload(payload):
            increment_counter(records_rejected_total, reason="empty_payload")
            return None
        return payload

    def _reject(self, cast: CastRecord, error: MentionDataError) -> None:
        increment_counter(records_rejected_total, reason="mention_data")
        logger.warning(
            f"Rejecting cast {cast.hash_hex}: {error}",
            extra={
                "cast_id": cast.id,
                "cast_hash": cast.hash_hex,
                "mentions_positions": error.positions,
                "mentions": error.fids,
            },
        )

    def enrich(self, casts: list[CastRecord], apply_filter: bool = True, grant_updates: bool = True) -> EnrichedBatch:
        """
        Build payloads for a page of casts.

        Args:
            casts: Cast rows
            apply_filter: Keep only eligible casts
            grant_updates: Also build grant-update payloads

        Returns:
            EnrichedBatch; records with bad mention data are counted as
            rejected and produce no payloads
        """
        batch = EnrichedBatch()
        for cast in casts:
            if apply_filter and not self.is_eligible(cast):
                continue
            batch.eligible += 1

            try:
                content = self.reconstruct_text(cast)
            except MentionDataError as e:
                self._reject(cast, e)
                batch.rejected += 1
                continue
            urls = self.embed_urls(cast)

            job = self.build_job_payload(cast, content, urls)
            if job is not None:
                batch.jobs.append(job)

            if grant_updates:
                batch.grant_updates.extend(build_grant_update_payloads(
                    cast,
                    content,
                    urls,
                    self.reference,
                    include_grant_context=self.enrichment.include_grant_context,
                ))
        return batch

    def dispatch_jobs(self, payloads: list[JobPayload]) -> None:
        """
        Post embedding jobs in batches.

        Raises:
            QueueError: On the first failed batch
        """
        for offset, chunk in batched(payloads, self.enrichment.job_batch_size):
            self.queue.post_jobs(list(chunk))
            increment_counter(payloads_dispatched_total, len(chunk), stream="jobs")
            logger.info(
                f"Successfully called embeddings queue for batch of {len(chunk)} casts (offset: {offset})",
                extra={"batch_size": len(chunk), "offset": offset},
            )

    def dispatch_grant_updates(self, payloads: list[GrantUpdatePayload]) -> None:
        """
        Post grant-update checks in batches.

        Raises:
            QueueError: On the first failed batch
        """
        for offset, chunk in batched(payloads, self.enrichment.grant_batch_size):
            self.queue.post_grant_update_checks(list(chunk))
            increment_counter(payloads_dispatched_total, len(chunk), stream="grant_updates")
            logger.info(
                f"Successfully checked grant updates for batch of {len(chunk)} casts (offset: {offset})",
                extra={"batch_size": len(chunk), "offset": offset},
            )

    def process_casts(self, casts: list[CastRecord]) -> EnrichedBatch:
        """Enrich eligible casts and dispatch both streams."""
        batch = self.enrich(casts)
        self.dispatch_jobs(batch.jobs)
        self.dispatch_grant_updates(batch.grant_updates)
        return batch

    def embed_production_casts(self, casts: list[ProductionCast]) -> EnrichedBatch:
        """Dispatch embedding jobs for already-promoted casts without filtering."""
        if not casts:
            logger.warning("No casts to embed")
            return EnrichedBatch()
        batch = self.enrich(casts, apply_filter=False, grant_updates=False)
        self.dispatch_jobs(batch.jobs)
        return batch

    def process_staging(self, pool: DatabaseConnectionPool) -> dict:
        """
        Page through staged top-level casts and dispatch their payloads.

        Args:
            pool: Warehouse pool

        Returns:
            Counts of rows read, eligible casts, rejected casts and payloads sent

        Raises:
            QueueError: If a dispatch fails; staged rows are left for the next run
        """
        casts_source = self.settings.source(IngestionType.CASTS)
        profiles_source = self.settings.source(IngestionType.PROFILES)
        query = sql.SQL(STAGING_CASTS_QUERY).format(
            staging=sql.Identifier("staging", casts_source.staging_table),
            profiles=sql.Identifier("production", profiles_source.production_table),
        )
        page_size = self.enrichment.staging_page_size

        totals = {"rows": 0, "eligible": 0, "rejected": 0, "jobs": 0, "grant_updates": 0}
        offset = 0
        logger.info("Processing casts from staging table")
        while True:
            rows = pool.execute_query(query, (page_size, offset))
            if not rows:
                break

            logger.info(
                f"Processing batch of {len(rows)} casts (offset: {offset})",
                extra={"batch_size": len(rows), "offset": offset},
            )
            batch = self.process_casts(parse_cast_rows(rows, StagingCast))

            totals["rows"] += len(rows)
            totals["eligible"] += batch.eligible
            totals["rejected"] += batch.rejected
            totals["jobs"] += len(batch.jobs)
            totals["grant_updates"] += len(batch.grant_updates)
            offset += page_size

        logger.info("Staged casts processed", extra=totals)
        return totals
