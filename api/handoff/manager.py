"""
Human Agent Handoff Manager for the Clinic Inbox.

Owns the per-conversation ai_mode flag:

    AI_ACTIVE (ai_mode=true) --escalation / staff takeover--> HUMAN_ACTIVE
    HUMAN_ACTIVE --staff release--> AI_ACTIVE

Only staff can hand a conversation back to the AI.
"""

import logging
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Conversation
from database.repositories import ConversationRepository
from inbox.errors import DataStoreError, NotFound
from inbox.metrics import record_escalation

logger = logging.getLogger(__name__)


class HandoffTrigger(Enum):
    """Reasons a conversation leaves AI mode."""
    USER_COMPLAINT = "user_complaint"
    ASSISTANT_DEFERRED = "assistant_deferred"
    KNOWLEDGE_MISSING = "knowledge_missing"
    UPSTREAM_FAILURE = "upstream_failure"
    STAFF_TAKEOVER = "staff_takeover"


class HandoffManager:
    """Persists handoffs by flipping ai_mode and notifies the console."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], notifier=None):
        self.session_factory = session_factory
        self.notifier = notifier

    async def is_ai_active(self, conversation_id: str) -> bool:
        async with self.session_factory() as session:
            conversation = await ConversationRepository(session).get_by_id(conversation_id)
        return bool(conversation and conversation.ai_mode)

    async def escalate(self, conversation_id: str, trigger: HandoffTrigger) -> bool:
        """
        Hand a conversation to staff.

        Returns:
            True if ai_mode flipped, False if staff already owned it
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    repo = ConversationRepository(session)
                    flipped = await repo.disable_ai_if_enabled(conversation_id)
                conversation = await repo.get_by_id(conversation_id) if flipped else None
        except SQLAlchemyError as e:
            raise DataStoreError(str(e)) from e

        if not flipped:
            return False

        logger.info(f"Handoff initiated: {conversation_id} ({trigger.value})")
        record_escalation(trigger.value)
        await self._notify(conversation)
        return True

    async def set_ai_mode(self, conversation_id: str, ai_mode: bool) -> Conversation:
        """
        Staff toggle for ai_mode.

        Raises:
            NotFound: If the conversation does not exist
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    repo = ConversationRepository(session)
                    updated = await repo.set_ai_mode(conversation_id, ai_mode)
                    if not updated:
                        raise NotFound(f"Conversation {conversation_id} not found")
                conversation = await repo.get_by_id(conversation_id)
        except SQLAlchemyError as e:
            raise DataStoreError(str(e)) from e

        if ai_mode:
            logger.info(f"Handoff resolved: {conversation_id} returned to AI")
        else:
            logger.info(f"Handoff initiated: {conversation_id} ({HandoffTrigger.STAFF_TAKEOVER.value})")
            record_escalation(HandoffTrigger.STAFF_TAKEOVER.value)

        await self._notify(conversation)
        return conversation

    async def _notify(self, conversation: Optional[Conversation]):
        if self.notifier is not None and conversation is not None:
            await self.notifier.conversation_updated(conversation)
