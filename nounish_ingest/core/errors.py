"""
Exception types raised across the ingestion pipeline.
"""


class PipelineError(Exception):
    """Base class for pipeline errors."""
    pass


class StoreError(PipelineError):
    """
    Relational store failure.

    Attributes:
        retryable: True for transient lock/deadlock conditions that a
            bounded retry loop may attempt again
        sqlstate: SQLSTATE reported by the server, when known
    """

    def __init__(self, message: str, retryable: bool = False, sqlstate: str | None = None):
        self.retryable = retryable
        self.sqlstate = sqlstate
        super().__init__(message)


class SourceKeyError(PipelineError, ValueError):
    """Raised when an object-storage key does not follow the source file pattern."""
    pass


class MentionDataError(PipelineError, ValueError):
    """
    Raised when a cast's mention arrays cannot be applied to its text.

    Covers mismatched position/fid array lengths and byte offsets that do
    not land on a code point boundary.
    """

    def __init__(self, message: str, positions=None, fids=None):
        self.positions = positions
        self.fids = fids
        super().__init__(message)


class QueueError(PipelineError):
    """
    Outbound queue request failed.

    Attributes:
        endpoint: Endpoint path that was called
        status_code: HTTP status code, None for transport failures
    """

    def __init__(self, message: str, endpoint: str, status_code: int | None = None):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"Queue request to {endpoint} failed ({status_code}): {message}")


class ReferenceDataError(PipelineError):
    """Raised when snapshot files required for enrichment are unavailable."""
    pass
