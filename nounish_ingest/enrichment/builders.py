"""
Builder-profile job dispatch for grant recipients.
"""

import time
from typing import Callable

from nounish_ingest.config import EnrichmentSettings
from nounish_ingest.core.models import BuilderProfileJob
from nounish_ingest.observability.logger import get_logger
from nounish_ingest.observability.metrics import increment_counter, payloads_dispatched_total
from nounish_ingest.reference.reference_data import ReferenceData
from nounish_ingest.sink.queue_client import EmbeddingsQueueClient

from .payloads import batched

logger = get_logger(__name__)


def builder_profile_jobs(reference: ReferenceData) -> list[BuilderProfileJob]:
    """One job per grant whose recipient address resolves to a fid."""
    jobs = []
    for grant in reference.grants:
        fid = reference.fid_for_address(grant.recipient) if grant.recipient else None
        if fid is None:
            logger.info(f"No FID found for address {grant.recipient}", extra={"grant_id": grant.id})
            continue
        jobs.append(BuilderProfileJob(fid=str(fid)))
    return jobs


def dispatch_builder_profiles(
    reference: ReferenceData,
    queue: EmbeddingsQueueClient,
    settings: EnrichmentSettings,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Post builder-profile jobs, pausing between batches.

    Returns:
        Number of jobs posted

    Raises:
        QueueError: On the first failed batch
    """
    jobs = builder_profile_jobs(reference)
    batches = list(batched(jobs, settings.builder_profile_batch_size))
    for index, (offset, chunk) in enumerate(batches):
        logger.info(f"Processing batch of {len(chunk)} builders...", extra={"offset": offset})
        queue.post_builder_profiles(list(chunk))
        increment_counter(payloads_dispatched_total, len(chunk), stream="builder_profiles")
        if index < len(batches) - 1 and settings.builder_profile_delay_seconds:
            sleep(settings.builder_profile_delay_seconds)

    logger.info("Completed processing all builder profiles", extra={"jobs": len(jobs)})
    return len(jobs)
