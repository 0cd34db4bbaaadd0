"""
Repository classes for the Clinic Inbox data access layer.

Each repository encapsulates CRUD operations for a specific model and
works inside the caller's session; callers own commit/rollback.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import (
    AISetting,
    ConnectedChannel,
    ContentType,
    Conversation,
    ConversationStatus,
    Customer,
    KnowledgeEntry,
    Message,
    SocialIdentity,
    utcnow,
)

logger = logging.getLogger(__name__)

GENERAL_CATEGORY = "general"


class CustomerRepository:
    """Data access for customers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, full_name: Optional[str] = None, **kwargs) -> Customer:
        customer = Customer(full_name=full_name, **kwargs)
        self.session.add(customer)
        await self.session.flush()
        return customer

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(Customer.id)))
        return result.scalar() or 0


class IdentityRepository:
    """Data access for per-platform identities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, platform: str, platform_user_id: str) -> Optional[SocialIdentity]:
        result = await self.session.execute(
            select(SocialIdentity).where(
                SocialIdentity.platform == platform,
                SocialIdentity.platform_user_id == platform_user_id,
            )
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        customer_id: str,
        platform: str,
        platform_user_id: str,
        profile_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> SocialIdentity:
        identity = SocialIdentity(
            customer_id=customer_id,
            platform=platform,
            platform_user_id=platform_user_id,
            profile_name=profile_name,
            avatar_url=avatar_url,
        )
        self.session.add(identity)
        await self.session.flush()
        return identity

    async def count(self, platform: Optional[str] = None) -> int:
        q = select(func.count(SocialIdentity.id))
        if platform:
            q = q.where(SocialIdentity.platform == platform)
        result = await self.session.execute(q)
        return result.scalar() or 0


class ConversationRepository:
    """Data access for conversations and messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, social_identity_id: str, channel_id: Optional[str] = None) -> Conversation:
        conv = Conversation(
            social_identity_id=social_identity_id,
            channel_id=channel_id,
            status=ConversationStatus.ACTIVE,
            ai_mode=True,
        )
        self.session.add(conv)
        await self.session.flush()
        return conv

    async def get_by_id(self, conversation_id: str) -> Optional[Conversation]:
        result = await self.session.execute(
            select(Conversation).where(Conversation.id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def get_with_identity(self, conversation_id: str) -> Optional[Conversation]:
        result = await self.session.execute(
            select(Conversation)
            .options(selectinload(Conversation.identity).selectinload(SocialIdentity.customer))
            .where(Conversation.id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def find_active(self, social_identity_id: str) -> List[Conversation]:
        """Active threads for an identity, newest first."""
        result = await self.session.execute(
            select(Conversation)
            .where(
                Conversation.social_identity_id == social_identity_id,
                Conversation.status == ConversationStatus.ACTIVE,
            )
            .order_by(Conversation.created_at.desc())
        )
        return list(result.scalars().all())

    async def set_ai_mode(self, conversation_id: str, ai_mode: bool) -> int:
        result = await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(ai_mode=ai_mode)
        )
        return result.rowcount

    async def disable_ai_if_enabled(self, conversation_id: str) -> bool:
        """Flip ai_mode to false only if it is currently true."""
        result = await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.ai_mode.is_(True))
            .values(ai_mode=False)
        )
        return result.rowcount > 0

    async def add_message(
        self,
        conversation_id: str,
        sender_type: str,
        content: str,
        content_type: str = ContentType.TEXT,
        raw_payload: Optional[Dict[str, Any]] = None,
    ) -> Message:
        # created_at must be strictly increasing within a conversation
        last = await self.session.execute(
            select(func.max(Message.created_at)).where(Message.conversation_id == conversation_id)
        )
        last_at = last.scalar()
        created_at = utcnow()
        if last_at is not None and created_at <= last_at:
            created_at = last_at + timedelta(microseconds=1)

        msg = Message(
            conversation_id=conversation_id,
            sender_type=sender_type,
            content_type=content_type,
            content=content,
            raw_payload=raw_payload,
            created_at=created_at,
        )
        self.session.add(msg)
        await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(last_message_at=created_at)
        )
        await self.session.flush()
        return msg

    async def get_messages(self, conversation_id: str, limit: int = 200) -> List[Message]:
        result = await self.session.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_recent_messages(
        self,
        conversation_id: str,
        limit: int,
        exclude_ids: Iterable[str] = (),
    ) -> List[Message]:
        """Last `limit` messages, returned oldest first."""
        if limit <= 0:
            return []
        q = select(Message).where(Message.conversation_id == conversation_id)
        exclude = [i for i in exclude_ids if i]
        if exclude:
            q = q.where(Message.id.notin_(exclude))
        result = await self.session.execute(
            q.order_by(Message.created_at.desc()).limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def count_messages(self, conversation_id: Optional[str] = None) -> int:
        q = select(func.count(Message.id))
        if conversation_id:
            q = q.where(Message.conversation_id == conversation_id)
        result = await self.session.execute(q)
        return result.scalar() or 0

    async def list_recent(self, limit: int = 50, offset: int = 0) -> List[Conversation]:
        """Console listing: newest activity first, with identity and customer."""
        result = await self.session.execute(
            select(Conversation)
            .options(selectinload(Conversation.identity).selectinload(SocialIdentity.customer))
            .order_by(Conversation.last_message_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())


class ChannelRepository:
    """Data access for connected platform accounts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> ConnectedChannel:
        channel = ConnectedChannel(**kwargs)
        self.session.add(channel)
        await self.session.flush()
        return channel

    async def get_by_id(self, channel_id: str) -> Optional[ConnectedChannel]:
        result = await self.session.execute(
            select(ConnectedChannel).where(ConnectedChannel.id == channel_id)
        )
        return result.scalar_one_or_none()

    async def get_by_account(self, platform: str, platform_account_id: str) -> Optional[ConnectedChannel]:
        result = await self.session.execute(
            select(ConnectedChannel).where(
                ConnectedChannel.platform == platform,
                ConnectedChannel.platform_account_id == platform_account_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> List[ConnectedChannel]:
        result = await self.session.execute(
            select(ConnectedChannel).order_by(ConnectedChannel.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete(self, channel_id: str) -> bool:
        result = await self.session.execute(
            delete(ConnectedChannel).where(ConnectedChannel.id == channel_id)
        )
        return result.rowcount > 0


class KnowledgeRepository:
    """Data access for knowledge base entries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> KnowledgeEntry:
        entry = KnowledgeEntry(**kwargs)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_many(self, entry_ids: Iterable[str]) -> List[KnowledgeEntry]:
        ids = list(entry_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(KnowledgeEntry).where(KnowledgeEntry.id.in_(ids))
        )
        return list(result.scalars().all())

    async def list_general(self) -> List[KnowledgeEntry]:
        """Entries in the reserved general category, oldest first."""
        result = await self.session.execute(
            select(KnowledgeEntry)
            .where(func.lower(KnowledgeEntry.category) == GENERAL_CATEGORY)
            .order_by(KnowledgeEntry.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_since(self, since: datetime, limit: int = 20) -> List[KnowledgeEntry]:
        result = await self.session.execute(
            select(KnowledgeEntry)
            .where(KnowledgeEntry.created_at >= since)
            .order_by(KnowledgeEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_recent(self, limit: int = 50, offset: int = 0) -> List[KnowledgeEntry]:
        result = await self.session.execute(
            select(KnowledgeEntry)
            .order_by(KnowledgeEntry.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_all(self) -> List[KnowledgeEntry]:
        """Every entry, oldest first."""
        result = await self.session.execute(
            select(KnowledgeEntry).order_by(KnowledgeEntry.created_at.asc())
        )
        return list(result.scalars().all())

    async def delete(self, entry_id: str) -> bool:
        result = await self.session.execute(
            delete(KnowledgeEntry).where(KnowledgeEntry.id == entry_id)
        )
        return result.rowcount > 0


class SettingsRepository:
    """Data access for the flat AI settings store."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_all(self) -> Dict[str, Any]:
        result = await self.session.execute(select(AISetting))
        return {row.key: row.value for row in result.scalars().all()}

    async def upsert(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            existing = await self.session.get(AISetting, key)
            if existing:
                existing.value = value
                existing.updated_at = utcnow()
            else:
                self.session.add(AISetting(key=key, value=value))
        await self.session.flush()
