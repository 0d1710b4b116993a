"""
Extraction of URLs from a cast's embeds column.

Embeds are a JSON array whose entries are either `{"url": ...}` or
`{"castId": {"fid": ..., "hash": ...}}`. Quoted casts are turned into
permalinks when the quoted author's handle is known.
"""

import json
from typing import Any, Mapping

from nounish_ingest.observability.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PERMALINK_HOST = "warpcast.com"


def build_permalink(fname: str, hash_hex: str, host: str = DEFAULT_PERMALINK_HOST) -> str:
    """Canonical cast URL: https://<host>/<fname>/0x<hex>."""
    return f"https://{host}/{fname}/0x{hash_hex.removeprefix('0x')}"


def decode_cast_hash(value: Any) -> str | None:
    """
    Hex (without 0x) of a cast hash given as a serialized buffer
    (`{"data": [...]}`), a list of byte values, or a hex string.
    """
    if isinstance(value, dict):
        value = value.get("data")
    if isinstance(value, (list, tuple)):
        try:
            return bytes(value).hex()
        except (TypeError, ValueError):
            return None
    if isinstance(value, str) and value:
        hex_part = value.removeprefix("0x")
        try:
            bytes.fromhex(hex_part)
        except ValueError:
            return None
        return hex_part.lower()
    return None


def _decode_embeds(embeds: Any) -> list:
    if embeds is None or embeds == "":
        return []
    if isinstance(embeds, str):
        try:
            embeds = json.loads(embeds)
        except json.JSONDecodeError as e:
            logger.warning(f"Error parsing cast embeds: {e}", extra={"embeds": embeds[:200]})
            return []
    if not isinstance(embeds, list):
        logger.warning("Cast embeds is not an array", extra={"embeds": repr(embeds)[:200]})
        return []
    return embeds


def get_cast_embed_urls(
    embeds: Any,
    fid_to_fname: Mapping[int, str],
    host: str = DEFAULT_PERMALINK_HOST,
) -> list[str]:
    """
    URLs referenced by a cast's embeds, in embed order.

    Args:
        embeds: JSON text or decoded list
        fid_to_fname: Handle lookup for quoted cast authors
        host: Permalink host for quoted casts

    Returns:
        URL list; malformed JSON yields an empty list, and quoted casts whose
        author handle is unknown are dropped
    """
    urls = []
    for embed in _decode_embeds(embeds):
        if not isinstance(embed, dict):
            continue

        if "url" in embed:
            if embed["url"]:
                urls.append(str(embed["url"]))
            continue

        cast_id = embed.get("castId")
        if not isinstance(cast_id, dict):
            continue
        try:
            fid = int(cast_id.get("fid"))
        except (TypeError, ValueError):
            continue
        fname = fid_to_fname.get(fid)
        hash_hex = decode_cast_hash(cast_id.get("hash"))
        if not fname or not hash_hex:
            continue
        urls.append(build_permalink(fname, hash_hex, host))
    return urls
