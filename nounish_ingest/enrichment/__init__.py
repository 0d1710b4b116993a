"""
Enrichment of staged rows: cast fan-out, member backfill and routing.
"""

from .builders import dispatch_builder_profiles
from .casts import CastEnrichmentEngine, EnrichedBatch
from .embeds import get_cast_embed_urls
from .members import CastBackfill, ChannelMemberProcessor
from .router import EnrichmentRouter
from .text import clean_text_for_embedding, insert_mentions

__all__ = [
    "CastEnrichmentEngine",
    "EnrichedBatch",
    "CastBackfill",
    "ChannelMemberProcessor",
    "EnrichmentRouter",
    "clean_text_for_embedding",
    "dispatch_builder_profiles",
    "get_cast_embed_urls",
    "insert_mentions",
]
