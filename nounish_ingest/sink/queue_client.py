"""
HTTP client for the embeddings queue.

Every request is a JSON POST authenticated with an `x-api-key` header.
Non-2xx responses and transport failures (including timeouts) are raised
as QueueError; callers leave staged rows in place so the batch is retried
on the next run.
"""

import os
from typing import Any, Iterable

import httpx
from pydantic import BaseModel

from nounish_ingest.core.errors import QueueError
from nounish_ingest.core.models import BuilderProfileJob, GrantUpdatePayload, JobPayload
from nounish_ingest.core.models.job_payload import EmbeddingType
from nounish_ingest.observability.logger import get_logger

logger = get_logger(__name__)

ADD_JOB = "/add-job"
BULK_ADD_JOB = "/bulk-add-job"
BULK_GRANT_UPDATE = "/bulk-add-is-grants-update"
BULK_BUILDER_PROFILE = "/bulk-add-builder-profile"
DELETE_EMBEDDING = "/delete-embedding"


def _wire(payloads: Iterable[BaseModel]) -> list[dict]:
    return [p.to_wire() for p in payloads]


class EmbeddingsQueueClient:
    """
    Client for the embeddings queue endpoints.

    Example:
        >>> with EmbeddingsQueueClient() as queue:
        ...     queue.post_jobs(payloads)
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        """
        Initialize the queue client.

        Args:
            base_url: Queue base URL (defaults to env var EMBEDDINGS_QUEUE_URL)
            api_key: API key (defaults to env var EMBEDDINGS_QUEUE_API_KEY)
            timeout: Request timeout in seconds
            client: Pre-built httpx client (tests pass one with a mock transport)

        Raises:
            ValueError: If the URL or API key is not configured
        """
        base_url = base_url or os.getenv("EMBEDDINGS_QUEUE_URL")
        api_key = api_key or os.getenv("EMBEDDINGS_QUEUE_API_KEY")
        if not base_url:
            raise ValueError("EMBEDDINGS_QUEUE_URL is not defined")
        if not api_key:
            raise ValueError("EMBEDDINGS_QUEUE_API_KEY is not defined")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.Client(timeout=timeout)

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "Cache-Control": "no-store",
        }

    def _post(self, endpoint: str, body: Any) -> httpx.Response:
        """
        POST a JSON body to an endpoint.

        Raises:
            QueueError: On a non-2xx status or a transport failure
        """
        try:
            response = self.client.post(f"{self.base_url}{endpoint}", headers=self._get_headers(), json=body)
        except httpx.TimeoutException as e:
            raise QueueError(f"request timed out: {e}", endpoint) from e
        except httpx.HTTPError as e:
            raise QueueError(str(e) or type(e).__name__, endpoint) from e

        if not response.is_success:
            text = response.text
            logger.error(
                f"Failed request to {endpoint}: {text}",
                extra={"endpoint": endpoint, "status_code": response.status_code},
            )
            raise QueueError(text or f"Failed request to {endpoint}", endpoint, response.status_code)
        return response

    def post_job(self, payload: JobPayload) -> None:
        """Queue a single embedding job."""
        self._post(ADD_JOB, payload.to_wire())

    def post_jobs(self, payloads: list[JobPayload]) -> None:
        """Queue a batch of embedding jobs."""
        self._post(BULK_ADD_JOB, {"jobs": _wire(payloads)})

    def post_grant_update_checks(self, payloads: list[GrantUpdatePayload]) -> None:
        """Submit casts to the grant-update classifier."""
        self._post(BULK_GRANT_UPDATE, {"jobs": _wire(payloads)})

    def post_builder_profiles(self, jobs: list[BuilderProfileJob]) -> None:
        self._post(BULK_BUILDER_PROFILE, {"jobs": _wire(jobs)})

    def delete_embedding(self, content_hash: str, embedding_type: EmbeddingType) -> None:
        """Remove a previously queued embedding by content hash."""
        self._post(DELETE_EMBEDDING, {"contentHash": content_hash, "type": embedding_type})

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
