"""
Payloads posted to the outbound embeddings queue.
"""

from typing import Literal

from pydantic import BaseModel, Field

EmbeddingType = Literal[
    "grant",
    "cast",
    "grant-application",
    "flow",
    "dispute",
    "draft-application",
    "builder-profile",
    "story",
]


class JobPayload(BaseModel):
    """
    One embedding job.

    Attributes:
        type: Embedding type tag
        content: Cleaned text to embed
        external_id: Canonical hex identifier of the source record
        users: Author fid and verified addresses
        groups: Channel/topic anchors
        tags: Mentioned fids and their verified addresses
        urls: Embedded links
        external_url: Canonical permalink
        hash_suffix: Disambiguates identical content across authors
    """

    type: EmbeddingType
    content: str
    external_id: str = Field(..., alias="externalId")
    users: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    urls: list[str] | None = None
    external_url: str | None = Field(default=None, alias="externalUrl")
    hash_suffix: str | None = Field(default=None, alias="hashSuffix")

    def to_wire(self) -> dict:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "type": "cast",
                "content": "gm @nounish",
                "externalId": "0x0a0b0c",
                "users": ["3621", "0x1111111111111111111111111111111111111111"],
                "groups": ["https://warpcast.com/~/channel/flows"],
                "tags": ["2"],
                "urls": ["https://nouns.wtf"],
                "externalUrl": "https://warpcast.com/alice/0x0a0b0c",
                "hashSuffix": "3621",
            }
        }


class GrantUpdatePayload(BaseModel):
    """
    Cast forwarded to the grant-update classifier.

    Grant context fields are only populated when grant context is enabled.
    """

    cast_content: str = Field(..., alias="castContent")
    cast_hash: str = Field(..., alias="castHash")
    builder_fid: str = Field(..., alias="builderFid")
    urls: list[str] = Field(default_factory=list)
    grant_id: str | None = Field(default=None, alias="grantId")
    grant_description: str | None = Field(default=None, alias="grantDescription")
    parent_flow_description: str | None = Field(default=None, alias="parentFlowDescription")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    class Config:
        populate_by_name = True


class BuilderProfileJob(BaseModel):
    """Request to (re)build a grant recipient's builder profile."""

    fid: str

    def to_wire(self) -> dict:
        return self.model_dump()
