"""
Context Builder for the Clinic Inbox.

Assembles knowledge entries into the context block handed to the model.
General guidance always comes first, followed by specific matches in
rank order, joined by a fixed delimiter and capped in length.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CONTEXT_DELIMITER = "\n---\n"
TRUNCATION_MARKER = "\n...[truncated]"


@dataclass
class Source:
    """Knowledge entry that contributed to a context."""
    id: str
    category: Optional[str]
    score: Optional[float] = None
    created_at: Optional[datetime] = None


@dataclass
class Context:
    """Assembled context for the model."""
    text: str
    sources: List[Source] = field(default_factory=list)
    general_count: int = 0
    match_count: int = 0
    truncated: bool = False


class ContextBuilder:
    """
    Builds context text from knowledge entries.

    Features:
    - Deduplication by entry id
    - General-first ordering
    - Hard character cap with a visible truncation marker
    """

    def __init__(self, max_chars: int = 12000, delimiter: str = CONTEXT_DELIMITER):
        self.max_chars = max_chars
        self.delimiter = delimiter

    def build(self, general: List[Any], matches: List[Any], scores: Optional[Dict[str, float]] = None) -> Context:
        """
        Build a context.

        Args:
            general: General-category entries, already ordered
            matches: Specific entries, already ranked
            scores: Similarity score per matched entry id

        Returns:
            Context with text and sources
        """
        scores = scores or {}
        seen = set()
        parts: List[str] = []
        sources: List[Source] = []
        general_count = 0
        match_count = 0

        for entry in general:
            if entry.id in seen or not (entry.content or "").strip():
                continue
            seen.add(entry.id)
            parts.append(entry.content.strip())
            sources.append(Source(id=entry.id, category=entry.category, created_at=entry.created_at))
            general_count += 1

        for entry in matches:
            if entry.id in seen or not (entry.content or "").strip():
                continue
            seen.add(entry.id)
            parts.append(entry.content.strip())
            sources.append(Source(
                id=entry.id,
                category=entry.category,
                score=scores.get(entry.id),
                created_at=entry.created_at,
            ))
            match_count += 1

        text, truncated = self._cap(self.delimiter.join(parts))
        if truncated:
            logger.info(f"Context truncated to {self.max_chars} chars ({len(parts)} entries)")

        return Context(
            text=text,
            sources=sources,
            general_count=general_count,
            match_count=match_count,
            truncated=truncated,
        )

    def _cap(self, text: str):
        if self.max_chars <= 0 or len(text) <= self.max_chars:
            return text, False
        keep = max(0, self.max_chars - len(TRUNCATION_MARKER))
        return text[:keep] + TRUNCATION_MARKER, True
