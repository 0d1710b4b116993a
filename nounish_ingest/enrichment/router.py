"""
Post-load routing of staged rows.
"""

from typing import Callable

from nounish_ingest.core.models import IngestionType
from nounish_ingest.observability.logger import get_logger
from nounish_ingest.warehouse.promotion import StagingPromoter
from nounish_ingest.warehouse.staging import StagingLoader

logger = get_logger(__name__)

# Type-specific processor: consumes the staged rows, raises to abort
StagedProcessor = Callable[[], object]


class EnrichmentRouter:
    """
    Runs the type processor, promotes to production, then truncates staging.

    When the processor or the promotion raises, staging is left as is so
    the next run sees the same rows again.
    """

    def __init__(
        self,
        loader: StagingLoader,
        promoter: StagingPromoter,
        processors: dict[IngestionType, StagedProcessor] | None = None,
    ):
        """
        Args:
            loader: Staging loader (owns truncation)
            promoter: Staging to production upsert
            processors: Processor per ingestion type; types without one are
                promoted directly
        """
        self.loader = loader
        self.promoter = promoter
        self.processors = dict(processors or {})

    def register(self, ingestion_type: IngestionType, processor: StagedProcessor) -> None:
        self.processors[ingestion_type] = processor

    def route(self, ingestion_type: IngestionType) -> None:
        """
        Raises:
            Exception: Whatever the processor or promotion raised
        """
        processor = self.processors.get(ingestion_type)
        if processor is not None:
            result = processor()
            logger.info(
                f"Processed staged {ingestion_type.value} rows",
                extra={"ingestion_type": ingestion_type.value, "result": result},
            )

        self.promoter.promote(ingestion_type)
        self.loader.truncate(ingestion_type)
