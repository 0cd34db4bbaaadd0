"""
Retrieval Module for the Clinic Inbox.

This module provides RAG retrieval capabilities:
- Embedding generation (OpenAI/Bedrock)
- Pinecone vector operations
- Context assembly with a hard length cap
- Knowledge base administration
"""

from .context_builder import Context, ContextBuilder
from .embedder import EmbeddingConfig, EmbeddingProvider, EmbeddingService
from .knowledge import KnowledgeRetriever, RetrievalResult
from .knowledge_store import KnowledgeStore
from .pinecone_client import PineconeClient, PineconeConfig, SearchResult

__all__ = [
    "Context",
    "ContextBuilder",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "EmbeddingService",
    "KnowledgeRetriever",
    "KnowledgeStore",
    "PineconeClient",
    "PineconeConfig",
    "RetrievalResult",
    "SearchResult",
]
