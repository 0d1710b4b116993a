"""
Cast records as read from the staging and production cast tables.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, field_validator, model_validator

from nounish_ingest.core.errors import MentionDataError


def _decode_json_array(value: Any, field_name: str) -> list:
    """Decode a JSON-encoded array column; native lists pass through."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise MentionDataError(f"{field_name} is not valid JSON: {value!r}") from e
    if not isinstance(value, (list, tuple)):
        raise MentionDataError(f"{field_name} must be an array, got {value!r}")
    return list(value)


class CastRecord(BaseModel, ABC):
    """
    Fields shared by staging and production casts.

    Attributes:
        id: Numeric row id (pagination key)
        fid: Author fid
        hash: 20-byte cast identifier
        parent_hash: Reply target; None for top-level posts
        parent_fid: Author of the reply target
        parent_url: Channel/topic the cast was posted to
        text: Raw cast text (mentions removed, positions are UTF-8 byte offsets)
        embeds: JSON text or decoded list of {url} / {castId} objects
        root_parent_url: Channel/topic anchor of the whole thread
        author_fname: Author handle joined from profiles, when known
    """

    id: int
    fid: int
    hash: bytes
    parent_hash: bytes | None = None
    parent_fid: int | None = None
    parent_url: str | None = None
    text: str = ""
    embeds: Any = None
    root_parent_url: str | None = None
    author_fname: str | None = None

    @field_validator("hash", "parent_hash", mode="before")
    @classmethod
    def coerce_hash(cls, v):
        """Accept bytea values (bytes/memoryview) and 0x-prefixed hex strings."""
        if v is None:
            return v
        if isinstance(v, memoryview):
            return v.tobytes()
        if isinstance(v, str):
            return bytes.fromhex(v.removeprefix("0x"))
        return v

    @field_validator("text", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return v or ""

    @property
    def hash_hex(self) -> str:
        """Canonical 0x-prefixed hex identifier."""
        return f"0x{self.hash.hex()}"

    @property
    def is_reply(self) -> bool:
        return self.parent_hash is not None

    @abstractmethod
    def mention_arrays(self) -> tuple[list, list]:
        """(positions, fids) as stored by the concrete table."""

    def mention_pairs(self) -> list[tuple[int, int]]:
        """
        Pair each mention byte offset with its mentioned fid.

        Raises:
            MentionDataError: If the arrays are malformed or differ in length
        """
        positions, fids = self.mention_arrays()
        if len(positions) != len(fids):
            raise MentionDataError(
                f"mention arrays differ in length for cast {self.hash_hex}: "
                f"{len(positions)} positions vs {len(fids)} fids",
                positions=positions,
                fids=fids,
            )
        try:
            return [(int(p), int(f)) for p, f in zip(positions, fids)]
        except (TypeError, ValueError) as e:
            raise MentionDataError(
                f"non-numeric mention data for cast {self.hash_hex}",
                positions=positions,
                fids=fids,
            ) from e

    def mentioned_fids(self) -> list[int]:
        """Mentioned fids without pairing against positions."""
        _, fids = self.mention_arrays()
        return [int(f) for f in fids]


class StagingCast(CastRecord):
    """
    Cast row from staging.farcaster_casts.

    Mentions arrive as JSON-encoded arrays straight from the Parquet export.
    """

    mentions: Any = None
    mentions_positions: Any = None

    def mention_arrays(self) -> tuple[list, list]:
        return (
            _decode_json_array(self.mentions_positions, "mentions_positions"),
            _decode_json_array(self.mentions, "mentions"),
        )


class ProductionCast(CastRecord):
    """
    Cast row from production.farcaster_casts.

    Mentions are stored as native arrays after promotion.
    """

    mentioned_fids_array: list[int] | None = None
    mentions_positions_array: list[int] | None = None

    @model_validator(mode="before")
    @classmethod
    def rename_mentioned_fids(cls, data: Any) -> Any:
        # Production column is named mentioned_fids, which collides with the method
        if isinstance(data, dict) and "mentioned_fids" in data:
            data = dict(data)
            data["mentioned_fids_array"] = data.pop("mentioned_fids")
        return data

    def mention_arrays(self) -> tuple[list, list]:
        return (
            list(self.mentions_positions_array or []),
            list(self.mentioned_fids_array or []),
        )
