"""
Pinecone Client for the Clinic Inbox.

Vector index for knowledge base entries. Vector ids equal knowledge
entry ids; the relational row stays the source of truth for content.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pinecone import Pinecone, ServerlessSpec

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """Result from a vector search."""
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PineconeConfig:
    """Configuration for Pinecone client."""
    api_key: str
    index_name: str = "clinic-knowledge"
    dimension: int = 1536
    metric: str = "cosine"
    cloud: str = "aws"
    region: str = "us-east-1"
    namespace: str = "knowledge"


class PineconeClient:
    """
    Client for Pinecone vector database operations.

    Supports:
    - Index management
    - Single vector upsert
    - Similarity search with a score floor
    - Deletion by id
    """

    def __init__(self, config: PineconeConfig):
        self.config = config
        self._client = None
        self._index = None

        self._initialize()

    def _initialize(self):
        """Initialize Pinecone client and index."""
        try:
            self._client = Pinecone(api_key=self.config.api_key)

            existing_indexes = [idx.name for idx in self._client.list_indexes()]
            if self.config.index_name not in existing_indexes:
                logger.info(f"Creating new Pinecone index: {self.config.index_name}")
                self._create_index()
            else:
                logger.info(f"Using existing Pinecone index: {self.config.index_name}")

            self._index = self._client.Index(self.config.index_name)

        except Exception as e:
            logger.error(f"Failed to initialize Pinecone: {e}")
            raise

    def _create_index(self):
        """Create a new Pinecone index."""
        self._client.create_index(
            name=self.config.index_name,
            dimension=self.config.dimension,
            metric=self.config.metric,
            spec=ServerlessSpec(cloud=self.config.cloud, region=self.config.region),
        )
        logger.info(f"Created Pinecone index: {self.config.index_name}")

    def upsert_single(self, id: str, embedding: List[float], metadata: Dict[str, Any]) -> bool:
        """
        Upsert a single vector.

        Args:
            id: Vector ID (knowledge entry id)
            embedding: Embedding vector
            metadata: Vector metadata; None values are dropped

        Returns:
            True if successful
        """
        clean = {k: v for k, v in metadata.items() if v is not None}
        try:
            self._index.upsert(vectors=[(id, embedding, clean)], namespace=self.config.namespace)
            return True
        except Exception as e:
            logger.error(f"Single upsert failed: {e}")
            return False

    def query(
        self,
        embedding: List[float],
        top_k: int = 5,
        filter: Optional[Dict[str, Any]] = None,
        min_score: float = 0.0,
    ) -> List[SearchResult]:
        """
        Query for similar vectors.

        Args:
            embedding: Query embedding
            top_k: Number of results to return
            filter: Metadata filter
            min_score: Minimum similarity score

        Returns:
            List of SearchResult objects, best first
        """
        try:
            response = self._index.query(
                vector=embedding,
                top_k=top_k,
                namespace=self.config.namespace,
                filter=filter,
                include_metadata=True,
            )

            results = [
                SearchResult(id=match.id, score=match.score, metadata=match.metadata or {})
                for match in response.matches
                if match.score >= min_score
            ]
            logger.debug(f"Query returned {len(results)} results")
            return results

        except Exception as e:
            logger.error(f"Query failed: {e}")
            raise

    def delete(self, ids: List[str]) -> bool:
        """
        Delete vectors from the index.

        Returns:
            True if successful
        """
        if not ids:
            return True
        try:
            self._index.delete(ids=ids, namespace=self.config.namespace)
            logger.info(f"Deleted {len(ids)} vectors from namespace '{self.config.namespace}'")
            return True
        except Exception as e:
            logger.error(f"Delete failed: {e}")
            return False
