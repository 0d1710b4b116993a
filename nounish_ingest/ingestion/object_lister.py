"""
Paginated listing of source objects in S3.
"""

import os
from typing import Iterator

import boto3
from pydantic import BaseModel, Field

from nounish_ingest.observability.logger import get_logger

logger = get_logger(__name__)

MAX_KEYS = 1000


class ObjectPage(BaseModel):
    """One page of a listing: keys in listing order plus the continuation token."""

    keys: list[str] = Field(default_factory=list)
    next_token: str | None = None


class S3ObjectLister:
    """
    Lists object keys under a prefix using ListObjectsV2.

    Credentials come from the standard boto3 chain; AWS_ACCESS_KEY and
    AWS_SECRET_KEY are honoured as explicit overrides.
    """

    def __init__(self, bucket: str, region: str = "us-east-1", client=None):
        """
        Initialize the lister.

        Args:
            bucket: Bucket to list
            region: AWS region of the bucket
            client: Pre-built S3 client (tests pass a stub)
        """
        self.bucket = bucket
        if client is None:
            access_key = os.getenv("AWS_ACCESS_KEY")
            secret_key = os.getenv("AWS_SECRET_KEY")
            client = boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=access_key or None,
                aws_secret_access_key=secret_key or None,
            )
        self.client = client

    def list_page(self, prefix: str, continuation_token: str | None = None) -> ObjectPage:
        """
        Fetch one page of keys.

        Args:
            prefix: Key prefix to list
            continuation_token: Token returned by the previous page, if any

        Returns:
            ObjectPage; next_token is None on the last page
        """
        params = {"Bucket": self.bucket, "Prefix": prefix, "MaxKeys": MAX_KEYS}
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        response = self.client.list_objects_v2(**params)
        keys = [item["Key"] for item in response.get("Contents", [])]
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        logger.debug(
            f"Listed {len(keys)} keys under {prefix}",
            extra={"bucket": self.bucket, "prefix": prefix, "has_more": next_token is not None},
        )
        return ObjectPage(keys=keys, next_token=next_token)

    def iter_pages(self, prefix: str) -> Iterator[ObjectPage]:
        """Yield pages until the listing is exhausted."""
        token = None
        while True:
            page = self.list_page(prefix, token)
            yield page
            if not page.next_token:
                return
            token = page.next_token

    def iter_keys(self, prefix: str) -> Iterator[str]:
        for page in self.iter_pages(prefix):
            yield from page.keys
