"""
Pydantic response models shared by the REST routes and the live console.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    crm_tags: Optional[List[str]] = None
    skin_concerns: Optional[List[str]] = None


class IdentityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    platform: str
    platform_user_id: str
    profile_name: Optional[str] = None
    avatar_url: Optional[str] = None
    customer: Optional[CustomerOut] = None


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    social_identity_id: str
    channel_id: Optional[str] = None
    status: str
    ai_mode: bool
    last_message_at: datetime
    created_at: datetime


class ConversationSummary(ConversationOut):
    identity: Optional[IdentityOut] = None


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    sender_type: str
    content_type: str
    content: str
    created_at: datetime


class ChannelOut(BaseModel):
    """Connected channel without its credentials."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    platform: str
    name: Optional[str] = None
    platform_account_id: str
    created_at: datetime


class KnowledgeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    content: str
    category: Optional[str] = None
    metadata_json: Optional[Dict[str, Any]] = None
    created_at: datetime
