"""
Core data models for the nounish ingestion pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .cast import CastRecord, ProductionCast, StagingCast
from .channel_member import ChannelMember
from .grant import Grant
from .ingestion_type import IngestionType
from .job_payload import BuilderProfileJob, GrantUpdatePayload, JobPayload
from .source_file import SourceFileKey

__all__ = [
    "IngestionType",
    "SourceFileKey",
    "CastRecord",
    "StagingCast",
    "ProductionCast",
    "ChannelMember",
    "Grant",
    "JobPayload",
    "GrantUpdatePayload",
    "BuilderProfileJob",
]
