"""
Conversation threading.

Each identity has at most one active conversation, backed by a partial
unique index. New threads start with ai_mode enabled.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Conversation
from database.repositories import ConversationRepository

from .errors import DataStoreError

logger = logging.getLogger(__name__)


class ConversationResolver:
    """Find-or-open the active conversation for an identity."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_active(self, social_identity_id: str) -> Optional[Conversation]:
        async with self.session_factory() as session:
            active = await ConversationRepository(session).find_active(social_identity_id)

        if len(active) > 1:
            # Should be impossible under the unique index; keep serving the newest
            logger.error(
                f"Identity {social_identity_id} has {len(active)} active conversations, "
                f"using {active[0].id}"
            )
        return active[0] if active else None

    async def resolve(self, social_identity_id: str, channel_id: Optional[str] = None) -> Conversation:
        """
        Return the identity's active conversation, opening one if none exists.

        Raises:
            DataStoreError: If the store cannot be read or written
        """
        try:
            conversation = await self.find_active(social_identity_id)
            if conversation:
                return conversation

            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        conversation = await ConversationRepository(session).create(
                            social_identity_id=social_identity_id,
                            channel_id=channel_id,
                        )
                logger.info(f"Opened conversation {conversation.id} for identity {social_identity_id}")
                return conversation
            except IntegrityError:
                logger.info(f"Conversation for {social_identity_id} opened concurrently, reusing it")

            conversation = await self.find_active(social_identity_id)
            if conversation is None:
                raise DataStoreError(f"Active conversation for {social_identity_id} vanished after conflict")
            return conversation

        except SQLAlchemyError as e:
            logger.error(f"Conversation resolution failed for {social_identity_id}: {e}")
            raise DataStoreError(str(e)) from e
