"""
Embedding job payload assembly.
"""

from typing import Iterator, Sequence, TypeVar

from nounish_ingest.core.models import CastRecord, JobPayload
from nounish_ingest.reference.reference_data import ReferenceData

from .embeds import DEFAULT_PERMALINK_HOST, build_permalink

T = TypeVar("T")

ETH_ADDRESS_LENGTH = 42


def unique_case_insensitive(values: Sequence[str], lowercase: bool = True) -> list[str]:
    """
    Drop case-insensitive duplicates, keeping first-seen order.

    Args:
        values: Values to deduplicate
        lowercase: Emit lower-cased values; when False the first-seen
            spelling of each value is kept
    """
    seen = set()
    result = []
    for value in values:
        value = str(value)
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(key if lowercase else value)
    return result


def push_user(users: list[str], value: str) -> None:
    """Append an identity, skipping 0x-strings that are not 20-byte addresses."""
    if value.startswith("0x") and len(value) != ETH_ADDRESS_LENGTH:
        return
    users.append(value)


def create_base_payload(
    cast: CastRecord,
    content: str,
    reference: ReferenceData,
    host: str = DEFAULT_PERMALINK_HOST,
) -> JobPayload:
    """
    Payload with identity, grouping and link fields filled from the cast.

    Tags and urls are left for the caller.
    """
    fname = cast.author_fname or reference.fname(cast.fid)
    users: list[str] = []
    push_user(users, str(cast.fid))
    for address in reference.addresses(cast.fid):
        push_user(users, address)

    groups = [url for url in (cast.root_parent_url, cast.parent_url) if url]

    return JobPayload(
        type="cast",
        content=content,
        external_id=cast.hash_hex,
        users=users,
        groups=groups,
        tags=[],
        urls=[],
        external_url=build_permalink(fname, cast.hash.hex(), host) if fname else None,
        hash_suffix=str(cast.fid),
    )


def add_mention_tags(payload: JobPayload, mentioned_fids: Sequence[int], reference: ReferenceData) -> None:
    for fid in mentioned_fids:
        payload.tags.append(str(fid))
        payload.tags.extend(reference.addresses(fid))


def finalize_payload(payload: JobPayload) -> JobPayload:
    """Deduplicate users, tags and groups (lower-cased) and urls (first spelling kept)."""
    payload.users = unique_case_insensitive(payload.users)
    payload.tags = unique_case_insensitive(payload.tags)
    payload.groups = unique_case_insensitive(payload.groups)
    if payload.urls is not None:
        payload.urls = unique_case_insensitive(payload.urls, lowercase=False)
    return payload


def is_empty_payload(payload: JobPayload) -> bool:
    return not payload.content and not payload.urls


def batched(items: Sequence[T], size: int) -> Iterator[tuple[int, Sequence[T]]]:
    """Yield (offset, slice) pairs of at most `size` items."""
    for offset in range(0, len(items), size):
        yield offset, items[offset:offset + size]
