"""
Parsing of incremental export object keys.

Keys look like
`public-postgres/farcaster/v2/incremental/farcaster-casts-0-1716400000.parquet`:
the basename carries the record tag, a sequence number and the export
time in epoch seconds.
"""

import posixpath
import re

from nounish_ingest.core.errors import SourceKeyError
from nounish_ingest.core.models import SourceFileKey
from nounish_ingest.observability.logger import get_logger

logger = get_logger(__name__)

PARQUET_SUFFIX = ".parquet"

SOURCE_KEY_PATTERN = re.compile(r"^farcaster-(.+?)-(\d+)-(\d+)\.parquet$")


def is_parquet_key(key: str) -> bool:
    return key.endswith(PARQUET_SUFFIX)


def parse_source_key(key: str) -> SourceFileKey:
    """
    Parse an object key into its components.

    Args:
        key: Full object key (any prefix)

    Returns:
        SourceFileKey with timestamp converted to epoch milliseconds

    Raises:
        SourceKeyError: If the basename does not match the export pattern
    """
    match = SOURCE_KEY_PATTERN.match(posixpath.basename(key))
    if not match:
        raise SourceKeyError(f"Key does not match the export naming pattern: {key}")

    tag, sequence, epoch_seconds = match.groups()
    return SourceFileKey(
        key=key,
        record_tag=tag,
        sequence=int(sequence),
        timestamp_ms=int(epoch_seconds) * 1000,
    )


def extract_timestamp(key: str) -> int:
    """
    Export timestamp of a key in epoch milliseconds.

    Unparseable keys yield 0, which is never newer than any watermark.
    """
    try:
        return parse_source_key(key).timestamp_ms
    except SourceKeyError:
        logger.warning(
            f"Could not extract timestamp from key: {key}",
            extra={"key": key},
        )
        return 0
