"""
Knowledge base administration.

Adding an entry embeds it synchronously, stores the row and upserts the
vector in one step; if the vector cannot be written the row is rolled
back so retrieval never sees half-indexed entries.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import KnowledgeEntry
from database.repositories import KnowledgeRepository
from inbox.errors import NotFound, UpstreamServiceError, classify_upstream_error

logger = logging.getLogger(__name__)


class KnowledgeStore:
    """Create, list and delete knowledge entries."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], embedding_service, vector_index):
        self.session_factory = session_factory
        self.embedding_service = embedding_service
        self.vector_index = vector_index

    async def add(
        self,
        content: str,
        category: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> KnowledgeEntry:
        """
        Add an entry to the knowledge base.

        Raises:
            ValueError: If content is blank
            UpstreamServiceError: If embedding or indexing fails
        """
        content = (content or "").strip()
        if not content:
            raise ValueError("Knowledge content must not be empty")

        try:
            embedding = await self.embedding_service.embed_text(content)
        except Exception as e:
            raise UpstreamServiceError(f"Embedding failed: {e}", classify_upstream_error(e), e) from e

        async with self.session_factory() as session:
            async with session.begin():
                entry = await KnowledgeRepository(session).create(
                    content=content,
                    category=category,
                    embedding=embedding,
                    metadata_json=metadata or {},
                )
                if self.vector_index is not None:
                    indexed = await asyncio.to_thread(
                        self.vector_index.upsert_single,
                        id=entry.id,
                        embedding=embedding,
                        metadata={"category": (category or "").lower(), "created_at": entry.created_at.isoformat()},
                    )
                    if not indexed:
                        # Raising inside the transaction rolls the row back
                        raise UpstreamServiceError("Vector upsert failed")

        logger.info(f"Knowledge entry {entry.id} added ({category or 'uncategorized'})")
        return entry

    async def list(self, limit: int = 50, offset: int = 0) -> List[KnowledgeEntry]:
        async with self.session_factory() as session:
            return await KnowledgeRepository(session).list_recent(limit=limit, offset=offset)

    async def delete(self, entry_id: str) -> None:
        """
        Remove an entry and its vector.

        Raises:
            NotFound: If no such entry exists
        """
        async with self.session_factory() as session:
            async with session.begin():
                deleted = await KnowledgeRepository(session).delete(entry_id)
        if not deleted:
            raise NotFound(f"Knowledge entry {entry_id} not found")

        if self.vector_index is not None and not await asyncio.to_thread(self.vector_index.delete, [entry_id]):
            # Orphan vectors have no row and are ignored at retrieval
            logger.warning(f"Vector for knowledge entry {entry_id} could not be deleted")
        logger.info(f"Knowledge entry {entry_id} deleted")
