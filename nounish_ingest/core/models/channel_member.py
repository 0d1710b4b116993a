"""
ChannelMember model representing one channel membership row.
"""

from datetime import datetime

from pydantic import BaseModel


class ChannelMember(BaseModel):
    """
    A channel membership as read from staging.farcaster_channel_members.

    Attributes:
        id: Row id shared between staging and production
        fid: Member fid
        channel_id: Channel slug (e.g. "nouns")
        timestamp: Membership timestamp
        deleted_at: Soft-delete marker
    """

    id: int
    fid: int
    channel_id: str
    timestamp: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
