"""
SQLAlchemy ORM models for the Clinic Inbox.

Tables: customers, social_identities, connected_channels, conversations,
messages, knowledge_entries, ai_settings.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SenderType:
    USER = "user"
    AI = "ai"
    AGENT = "agent"


class ContentType:
    TEXT = "text"
    IMAGE = "image"
    STICKER = "sticker"


class ConversationStatus:
    ACTIVE = "active"
    ARCHIVED = "archived"


# ── Customers & Identities ────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=_uuid)
    full_name = Column(String(255), nullable=True)
    phone_number = Column(String(50), nullable=True)
    crm_tags = Column(JSON, default=list)
    skin_concerns = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    identities = relationship("SocialIdentity", back_populates="customer")


class SocialIdentity(Base):
    __tablename__ = "social_identities"
    __table_args__ = (
        UniqueConstraint("platform", "platform_user_id", name="uq_identity_platform_user"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    platform = Column(String(20), nullable=False)
    platform_user_id = Column(String(255), nullable=False)
    profile_name = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    customer = relationship("Customer", back_populates="identities")
    conversations = relationship("Conversation", back_populates="identity")


# ── Channels ──────────────────────────────────────────────────────


class ConnectedChannel(Base):
    __tablename__ = "connected_channels"
    __table_args__ = (
        UniqueConstraint("platform", "platform_account_id", name="uq_channel_platform_account"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    platform = Column(String(20), nullable=False)
    name = Column(String(255), nullable=True)
    platform_account_id = Column(String(255), nullable=False)
    access_token = Column(Text, nullable=False)
    channel_secret = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ── Conversations & Messages ─────────────────────────────────────


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # At most one active thread per identity
        Index(
            "uq_conversation_active_identity",
            "social_identity_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    social_identity_id = Column(
        String(36), ForeignKey("social_identities.id"), nullable=False, index=True
    )
    channel_id = Column(
        String(36), ForeignKey("connected_channels.id", ondelete="SET NULL"), nullable=True
    )
    status = Column(String(20), default=ConversationStatus.ACTIVE, nullable=False)
    ai_mode = Column(Boolean, default=True, nullable=False)
    last_message_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    identity = relationship("SocialIdentity", back_populates="conversations")
    channel = relationship("ConnectedChannel")
    messages = relationship(
        "Message", back_populates="conversation", order_by="Message.created_at"
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(
        String(36), ForeignKey("conversations.id"), nullable=False, index=True
    )
    sender_type = Column(String(10), nullable=False)  # user, ai, agent
    content_type = Column(String(10), default=ContentType.TEXT, nullable=False)
    content = Column(Text, nullable=False)
    raw_payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    conversation = relationship("Conversation", back_populates="messages")


# ── Knowledge & Settings ──────────────────────────────────────────


class KnowledgeEntry(Base):
    __tablename__ = "knowledge_entries"

    id = Column(String(36), primary_key=True, default=_uuid)
    content = Column(Text, nullable=False)
    category = Column(String(100), nullable=True, index=True)
    embedding = Column(JSON, nullable=True)
    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class AISetting(Base):
    __tablename__ = "ai_settings"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
