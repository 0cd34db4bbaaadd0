"""
Knowledge retrieval for response generation.

Combines always-on general guidance with similarity-ranked specific
entries. Vector search failures degrade to an empty match set; they
never abort a reply.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import MAX_RECENT_KNOWLEDGE_DAYS, AISettings
from database.models import KnowledgeEntry, utcnow
from database.repositories import GENERAL_CATEGORY, KnowledgeRepository
from inbox.metrics import record_retrieval_latency

from .context_builder import Context, ContextBuilder
from .pinecone_client import SearchResult

logger = logging.getLogger(__name__)

RECENT_UPDATES_HEADER = "Recent updates:"
RECENT_UPDATES_LIMIT = 20


class VectorIndex(Protocol):
    def query(self, embedding: List[float], top_k: int = 5, filter=None, min_score: float = 0.0) -> List[SearchResult]: ...
    def upsert_single(self, id: str, embedding: List[float], metadata: Dict) -> bool: ...
    def delete(self, ids: List[str]) -> bool: ...


@dataclass
class RetrievalResult:
    """Context plus whether anything specific matched."""
    context_text: str
    found: bool
    context: Optional[Context] = None
    degraded: bool = False
    warnings: List[str] = field(default_factory=list)


class KnowledgeRetriever:
    """Retrieves knowledge context for a customer message."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedding_service,
        vector_index: Optional[VectorIndex],
        timeout: float = 10.0,
    ):
        self.session_factory = session_factory
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.timeout = timeout

    async def retrieve(self, query_text: str, settings: AISettings) -> RetrievalResult:
        """
        Retrieve context for a query.

        Args:
            query_text: Customer message
            settings: Current AI settings (threshold, match count, cap, mode)

        Returns:
            RetrievalResult; found is True iff a specific entry cleared the threshold
        """
        start = time.time()
        try:
            if settings.use_finetuned_model:
                return await self._retrieve_recent(settings)
            return await self._retrieve_ranked(query_text, settings)
        finally:
            record_retrieval_latency(time.time() - start)

    async def _retrieve_ranked(self, query_text: str, settings: AISettings) -> RetrievalResult:
        warnings: List[str] = []

        try:
            async with self.session_factory() as session:
                general = await KnowledgeRepository(session).list_general()
        except SQLAlchemyError as e:
            logger.warning(f"General knowledge unavailable: {e}")
            warnings.append("general knowledge unavailable")
            general = []

        matches: List[KnowledgeEntry] = []
        scores: Dict[str, float] = {}
        try:
            matches, scores = await asyncio.wait_for(
                self._search(query_text, settings, skip=len(general)), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Knowledge search timed out after {self.timeout}s")
            warnings.append("search timed out")
        except Exception as e:
            logger.warning(f"Knowledge search failed: {e}")
            warnings.append("search failed")

        builder = ContextBuilder(max_chars=settings.max_context_chars)
        context = builder.build(general, matches, scores)

        logger.debug(
            f"Retrieved {context.general_count} general and {context.match_count} specific entries"
        )
        return RetrievalResult(
            context_text=context.text,
            found=context.match_count > 0,
            context=context,
            degraded=bool(warnings),
            warnings=warnings,
        )

    async def _search(self, query_text: str, settings: AISettings, skip: int = 0):
        """
        Top specific entries for a query.

        General entries are indexed too, so the query over-fetches by
        `skip` hits to leave room for match_count specific ones.
        """
        if self.vector_index is None or self.embedding_service is None:
            raise RuntimeError("Vector search is not configured")

        embedding = await self.embedding_service.embed_text(query_text)
        hits = await asyncio.to_thread(
            self.vector_index.query,
            embedding=embedding,
            top_k=settings.match_count + skip,
            min_score=settings.min_confidence,
        )
        scores = {hit.id: hit.score for hit in hits if hit.score >= settings.min_confidence}
        if not scores:
            return [], {}

        async with self.session_factory() as session:
            entries = await KnowledgeRepository(session).get_many(scores.keys())

        # General entries are already included; stale vectors have no row
        specific = [e for e in entries if (e.category or "").lower() != GENERAL_CATEGORY]
        specific.sort(key=lambda e: (scores[e.id], e.created_at), reverse=True)
        return specific[: settings.match_count], scores

    async def _retrieve_recent(self, settings: AISettings) -> RetrievalResult:
        """Fine-tuned mode: the model carries the baseline, add only recent entries."""
        days = min(MAX_RECENT_KNOWLEDGE_DAYS, max(0, settings.recent_knowledge_days))
        since = utcnow() - timedelta(days=days)
        try:
            async with self.session_factory() as session:
                recent = await KnowledgeRepository(session).list_since(since, limit=RECENT_UPDATES_LIMIT)
        except SQLAlchemyError as e:
            logger.warning(f"Recent knowledge unavailable: {e}")
            return RetrievalResult(context_text="", found=True, degraded=True, warnings=["recent knowledge unavailable"])

        cap = max(1, settings.max_context_chars - len(RECENT_UPDATES_HEADER) - 1)
        context = ContextBuilder(max_chars=cap).build([], recent)
        text = f"{RECENT_UPDATES_HEADER}\n{context.text}" if context.text else ""
        return RetrievalResult(context_text=text, found=True, context=context)
