"""
Processing of a single discovered source file.
"""

from nounish_ingest.core.models import IngestionType
from nounish_ingest.enrichment.router import EnrichmentRouter
from nounish_ingest.observability.logger import get_logger, log_operation
from nounish_ingest.warehouse.staging import StagingLoader

logger = get_logger(__name__)


class FileProcessor:
    """
    Loads one file into staging, then routes the staged rows.

    Any exception propagates to the discovery loop, which records the key
    as failed and leaves the watermark where it was.
    """

    def __init__(self, loader: StagingLoader, router: EnrichmentRouter):
        self.loader = loader
        self.router = router

    def process(self, key: str, ingestion_type: IngestionType) -> int:
        """
        Args:
            key: Object key of the Parquet file
            ingestion_type: Record family of the file

        Returns:
            Number of rows staged from the file
        """
        with log_operation("Processing source file", logger=logger, key=key, ingestion_type=ingestion_type.value):
            row_count = self.loader.load(key, ingestion_type)
            self.router.route(ingestion_type)
        return row_count
