"""
Grant-update classification requests.

A cast is forwarded to the grant-update classifier when its author has
verified an address that receives a grant.
"""

from nounish_ingest.core.models import CastRecord, Grant, GrantUpdatePayload
from nounish_ingest.observability.logger import get_logger
from nounish_ingest.reference.reference_data import ReferenceData

from .text import clean_text_for_embedding

logger = get_logger(__name__)


def matching_grants(cast: CastRecord, reference: ReferenceData) -> list[Grant]:
    """Grants whose recipient is one of the author's verified addresses."""
    return reference.grants_for_addresses(reference.addresses(cast.fid))


def build_grant_update_payloads(
    cast: CastRecord,
    content: str,
    urls: list[str],
    reference: ReferenceData,
    include_grant_context: bool = False,
) -> list[GrantUpdatePayload]:
    """
    Classifier payloads for one cast.

    Args:
        cast: Eligible top-level cast
        content: Cleaned text with mentions inlined
        urls: Embed URLs of the cast
        reference: Reference data holding profiles and grants
        include_grant_context: Emit one payload per matched grant carrying
            the grant and parent flow descriptions

    Returns:
        Empty when the author receives no grant or the cast has neither
        content nor urls
    """
    grants = matching_grants(cast, reference)
    if not grants:
        return []

    if not content and not urls:
        logger.info(
            f"Skipping cast {cast.id} because it has no content or urls",
            extra={"cast_id": cast.id, "cast_hash": cast.hash_hex, "fid": cast.fid},
        )
        return []

    base = {
        "cast_content": content,
        "cast_hash": cast.hash_hex,
        "builder_fid": str(cast.fid),
        "urls": list(urls),
    }
    if not include_grant_context:
        return [GrantUpdatePayload(**base)]

    payloads = []
    for grant in grants:
        parent = reference.parent_grant(grant)
        payloads.append(GrantUpdatePayload(
            **base,
            grant_id=grant.id,
            grant_description=clean_text_for_embedding(grant.description),
            parent_flow_description=clean_text_for_embedding(parent.description if parent else ""),
        ))
    return payloads
