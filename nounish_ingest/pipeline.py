"""
Ingestion pipeline orchestration.

Wires discovery → load → enrich → promote → truncate for each ingestion
type, plus the snapshot and builder-profile maintenance tasks.
"""

from nounish_ingest.config import PipelineSettings
from nounish_ingest.core.models import IngestionType
from nounish_ingest.enrichment import (
    CastBackfill,
    CastEnrichmentEngine,
    ChannelMemberProcessor,
    EnrichmentRouter,
    dispatch_builder_profiles,
)
from nounish_ingest.ingestion import (
    DiscoveryResult,
    FileDiscoveryLoop,
    FileProcessor,
    S3ObjectLister,
    compute_min_time,
)
from nounish_ingest.observability.logger import get_logger
from nounish_ingest.reference import ReferenceData, ReferenceDataLoader, SnapshotExporter
from nounish_ingest.sink import EmbeddingsQueueClient
from nounish_ingest.warehouse.connection import DatabaseConnectionPool
from nounish_ingest.warehouse.promotion import StagingPromoter
from nounish_ingest.warehouse.staging import StagingLoader
from nounish_ingest.warehouse.watermark import FileWatermarkStore, PostgresWatermarkStore, WatermarkStore

logger = get_logger(__name__)

# Types whose processors consult the snapshots
TYPES_NEEDING_REFERENCE = frozenset({IngestionType.CASTS, IngestionType.CHANNEL_MEMBERS})


def build_watermark_store(settings: PipelineSettings, pool: DatabaseConnectionPool | None) -> WatermarkStore:
    if settings.watermark.backend == "postgres":
        if pool is None:
            raise ValueError("The postgres watermark backend needs a database pool")
        return PostgresWatermarkStore(pool)
    return FileWatermarkStore(settings.watermark.directory)


class IngestionPipeline:
    """
    Runs discovery passes and maintenance tasks against shared resources.

    Each run builds its own router and processors around a freshly loaded
    ReferenceData value, so concurrent runs of different types share no
    mutable enrichment state.

    Example:
        >>> pipeline = IngestionPipeline(settings, pool, queue)
        >>> pipeline.run_type(IngestionType.CASTS)
    """

    def __init__(
        self,
        settings: PipelineSettings,
        pool: DatabaseConnectionPool,
        queue: EmbeddingsQueueClient,
        lister: S3ObjectLister | None = None,
        watermarks: WatermarkStore | None = None,
        exporter: SnapshotExporter | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            settings: Pipeline settings
            pool: Warehouse connection pool (opened by the caller)
            queue: Outbound queue client
            lister: Object lister (defaults to S3 for the configured bucket)
            watermarks: Watermark store (defaults per settings.watermark)
            exporter: Snapshot exporter (defaults to one on the same pool)
        """
        self.settings = settings
        self.pool = pool
        self.queue = queue
        self.lister = lister or S3ObjectLister(settings.bucket, settings.aws_region)
        self.watermarks = watermarks or build_watermark_store(settings, pool)
        self.exporter = exporter or SnapshotExporter(pool, settings)
        self.reference_loader = ReferenceDataLoader(settings.snapshots.data_dir, exporter=self.exporter)

        self.loader = StagingLoader(pool, settings)
        self.promoter = StagingPromoter(pool, settings)

    def load_reference(self) -> ReferenceData:
        """Export missing snapshots, then read them."""
        return self.reference_loader.ensure_available().load()

    def build_router(self, reference: ReferenceData | None) -> EnrichmentRouter:
        router = EnrichmentRouter(self.loader, self.promoter)
        if reference is None:
            return router

        engine = CastEnrichmentEngine(reference, self.queue, self.settings)
        backfill = CastBackfill(self.pool, engine, self.settings)
        members = ChannelMemberProcessor(self.pool, reference, backfill, self.settings)
        router.register(IngestionType.CASTS, lambda: engine.process_staging(self.pool))
        router.register(IngestionType.CHANNEL_MEMBERS, members.process)
        return router

    def build_discovery(self, reference: ReferenceData | None) -> FileDiscoveryLoop:
        processor = FileProcessor(self.loader, self.build_router(reference))
        return FileDiscoveryLoop(self.lister, self.watermarks, processor, self.settings)

    def min_time(self, ingestion_type: IngestionType) -> int:
        return compute_min_time(self.settings.source(ingestion_type).lookback_seconds)

    def run_type(self, ingestion_type: IngestionType, min_time: int | None = None) -> DiscoveryResult:
        """
        Run one discovery pass for a type.

        Args:
            ingestion_type: Record family to ingest
            min_time: Floor timestamp (epoch ms); defaults to now minus the
                type's lookback

        Raises:
            ReferenceDataError: If snapshots are missing and cannot be exported
        """
        if min_time is None:
            min_time = self.min_time(ingestion_type)

        reference = self.load_reference() if ingestion_type in TYPES_NEEDING_REFERENCE else None
        discovery = self.build_discovery(reference)
        discovery.log_status(min_time)
        return discovery.run(ingestion_type, min_time)

    def refresh_snapshots(self) -> dict[str, int]:
        return self.exporter.export_all()

    def run_builder_profiles(self) -> int:
        """
        Refresh grants and profiles, then post builder-profile jobs.

        Returns:
            Number of jobs posted
        """
        self.exporter.export_grants()
        self.exporter.export_profiles()
        reference = self.load_reference()
        return dispatch_builder_profiles(reference, self.queue, self.settings.enrichment)

    def close(self) -> None:
        self.exporter.close()
        self.queue.close()
