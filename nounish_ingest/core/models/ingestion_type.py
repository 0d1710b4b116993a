"""
IngestionType enumerates the record families landing in object storage.
"""

from enum import Enum


class IngestionType(str, Enum):
    """
    Source record families.

    Each value is also the key used for the type's watermark and for its
    section in the pipeline configuration.
    """

    PROFILES = "profiles"
    CASTS = "casts"
    CHANNEL_MEMBERS = "channel-members"

    @classmethod
    def parse(cls, value: str) -> "IngestionType":
        """Accept both 'channel-members' and 'channel_members' spellings."""
        try:
            return cls(value.replace("_", "-"))
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown ingestion type '{value}'. Valid types: {valid}") from None
