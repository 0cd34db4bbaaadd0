"""
Response Generator for the Clinic Inbox.

Orchestrates one AI turn from a customer message to a reply:

1. Load current AI settings
2. Load recent history
3. Retrieve knowledge
4. Short-circuit to the fallback line when knowledge is required but missing
5. Build prompts and call the model under a timeout
6. Scan the reply for escalation triggers

Upstream failures become a fallback reply with escalation; nothing here
raises into the caller.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import AISettings
from database.repositories import ConversationRepository, SettingsRepository
from inbox.errors import UpstreamCategory, classify_upstream_error
from inbox.metrics import record_fallback, record_llm_latency
from retrieval.knowledge import KnowledgeRetriever

from .guardrails import EscalationDetector
from .prompt_templates import FALLBACK_MESSAGES, FallbackCategory, PromptTemplates

logger = logging.getLogger(__name__)

MAX_CONFIDENCE = 1.0


class EscalationReason:
    KNOWLEDGE_MISSING = "knowledge_missing"
    UPSTREAM_FAILURE = "upstream_failure"
    ASSISTANT_DEFERRED = "assistant_deferred"
    USER_COMPLAINT = "user_complaint"


@dataclass
class GenerationResult:
    """Outcome of one AI turn."""
    message: str
    should_escalate: bool
    confidence: float
    reason: Optional[str] = None
    model_id: Optional[str] = None
    processing_time_ms: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ResponseGenerator:
    """Produces AI replies grounded in the clinic knowledge base."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retriever: KnowledgeRetriever,
        llm_provider: Any,
        generation_timeout: float = 25.0,
        clinic_name: str = "our clinic",
        escalation_detector: Optional[EscalationDetector] = None,
    ):
        """
        Args:
            session_factory: Database session factory
            retriever: Knowledge retriever
            llm_provider: Object exposing agenerate(prompt, system=, model_id=)
            generation_timeout: Seconds allowed for the model call
            clinic_name: Name used in the default persona
            escalation_detector: Trigger scanner for generated replies
        """
        self.session_factory = session_factory
        self.retriever = retriever
        self.llm_provider = llm_provider
        self.generation_timeout = generation_timeout
        self.clinic_name = clinic_name
        self.escalation_detector = escalation_detector or EscalationDetector()

    async def load_settings(self) -> AISettings:
        """Read AI settings fresh; defaults apply when the store is unreadable."""
        try:
            async with self.session_factory() as session:
                values = await SettingsRepository(session).get_all()
        except SQLAlchemyError as e:
            logger.warning(f"AI settings unavailable, using defaults: {e}")
            values = {}
        return AISettings.from_mapping(values)

    async def _load_history(self, conversation_id: str, limit: int, exclude_ids: Iterable[str]) -> List:
        try:
            async with self.session_factory() as session:
                return await ConversationRepository(session).get_recent_messages(
                    conversation_id, limit=limit, exclude_ids=exclude_ids
                )
        except SQLAlchemyError as e:
            logger.warning(f"History unavailable for {conversation_id}: {e}")
            return []

    async def generate(
        self,
        conversation_id: str,
        user_message: str,
        exclude_message_ids: Iterable[str] = (),
    ) -> GenerationResult:
        """
        Generate a reply for a customer message.

        Args:
            conversation_id: Conversation the message belongs to
            user_message: Text of the customer message
            exclude_message_ids: Ids kept out of history (the message itself)

        Returns:
            GenerationResult; never raises for upstream failures
        """
        start = time.time()
        settings = await self.load_settings()
        history = await self._load_history(conversation_id, settings.history_window, exclude_message_ids)

        retrieval = await self.retriever.retrieve(user_message, settings)
        if retrieval.degraded:
            logger.warning(f"Retrieval degraded for {conversation_id}: {retrieval.warnings}")

        if settings.require_knowledge and not retrieval.found:
            logger.info(f"No knowledge match for {conversation_id}, returning fallback line")
            record_fallback(EscalationReason.KNOWLEDGE_MISSING)
            return GenerationResult(
                message=settings.fallback_message,
                should_escalate=True,
                confidence=0.0,
                reason=EscalationReason.KNOWLEDGE_MISSING,
                processing_time_ms=(time.time() - start) * 1000,
            )

        system_prompt = PromptTemplates.build_system_prompt(
            settings, retrieval.context_text, clinic_name=self.clinic_name
        )
        user_prompt = PromptTemplates.build_user_prompt(user_message, history)
        model_id = settings.finetuned_model if settings.use_finetuned_model else None

        if self.llm_provider is None:
            logger.error("No LLM provider configured")
            return self._fallback(UpstreamCategory.CREDENTIALS, start)

        llm_start = time.time()
        try:
            text = await asyncio.wait_for(
                self.llm_provider.agenerate(user_prompt, system=system_prompt, model_id=model_id),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Generation timed out after {self.generation_timeout}s for {conversation_id}")
            return self._fallback(UpstreamCategory.TIMEOUT, start)
        except Exception as e:
            category = classify_upstream_error(e)
            logger.error(f"Generation failed for {conversation_id} ({category}): {e}")
            return self._fallback(category, start)
        finally:
            record_llm_latency(time.time() - llm_start)

        text = (text or "").strip()
        if not text:
            logger.warning(f"Empty model output for {conversation_id}")
            return self._fallback(UpstreamCategory.GENERIC, start)

        check = self.escalation_detector.check(text, user_message, settings.fallback_message)
        return GenerationResult(
            message=text,
            should_escalate=check.escalate,
            confidence=MAX_CONFIDENCE,
            reason=check.reasons[0] if check.reasons else None,
            model_id=model_id,
            processing_time_ms=(time.time() - start) * 1000,
            metadata={
                "knowledge_found": retrieval.found,
                "context_chars": len(retrieval.context_text),
                "history_messages": len(history),
            },
        )

    def _fallback(self, category: str, start: float) -> GenerationResult:
        if category not in (FallbackCategory.QUOTA, FallbackCategory.CREDENTIALS):
            category = FallbackCategory.GENERIC
        record_fallback(category)
        return GenerationResult(
            message=FALLBACK_MESSAGES[category],
            should_escalate=True,
            confidence=0.0,
            reason=EscalationReason.UPSTREAM_FAILURE,
            processing_time_ms=(time.time() - start) * 1000,
            metadata={"fallback": category},
        )
