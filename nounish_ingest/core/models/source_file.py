"""
SourceFileKey model for object-storage keys of incremental Parquet exports.
"""

from pydantic import BaseModel, Field


class SourceFileKey(BaseModel):
    """
    A parsed source file key.

    Attributes:
        key: Full object key
        record_tag: Record family tag embedded in the basename
            (e.g. "casts", "profile_with_addresses")
        sequence: Export sequence number embedded in the basename
        timestamp_ms: Embedded export time in epoch milliseconds
    """

    key: str = Field(..., min_length=1)
    record_tag: str
    sequence: int
    timestamp_ms: int = Field(..., ge=0)

    @property
    def table_name(self) -> str:
        """Staging table name derived from the record tag."""
        return f"farcaster_{self.record_tag}"
