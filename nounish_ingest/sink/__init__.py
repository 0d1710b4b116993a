"""
Outbound embeddings queue adapter.
"""

from .queue_client import EmbeddingsQueueClient

__all__ = ["EmbeddingsQueueClient"]
