"""
Abstract Channel Provider for the Clinic Inbox.

Base class for messaging platform integrations. A provider knows how to
route an inbound webhook to a connected channel, check its signature,
normalize its events, look up a sender profile, and push a reply.
"""

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class EventType:
    TEXT = "text"
    IMAGE = "image"
    STICKER = "sticker"


# Stored content for non-text events
PLACEHOLDER_CONTENT = {
    EventType.IMAGE: "[image]",
    EventType.STICKER: "[sticker]",
}


@dataclass
class UserProfile:
    """Display details for a platform user."""
    display_name: Optional[str] = None
    picture_url: Optional[str] = None


@dataclass
class InboundEvent:
    """Platform-neutral inbound message."""
    platform: str
    platform_user_id: str
    type: str
    message_id: Optional[str] = None
    timestamp: Optional[int] = None
    text: Optional[str] = None
    image_url: Optional[str] = None
    sticker_id: Optional[str] = None
    user_profile: Optional[UserProfile] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> str:
        """Text persisted for this event."""
        if self.type == EventType.TEXT:
            return self.text or ""
        return PLACEHOLDER_CONTENT.get(self.type, f"[{self.type}]")


@dataclass
class ChannelMessage:
    """Message to send via a channel."""
    to: str  # Platform user id
    content: str


@dataclass
class ChannelResponse:
    """Response from channel send operation."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class ChannelCredentials(Protocol):
    """Connected account details (see database.models.ConnectedChannel)."""
    platform: str
    platform_account_id: str
    access_token: str
    channel_secret: Optional[str]


class ChannelProvider(ABC):
    """Abstract base class for messaging platforms."""

    platform: str = ""
    signature_header: str = ""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    # ── Inbound ────────────────────────────────────────────────────

    @abstractmethod
    def destinations(self, body: Dict[str, Any]) -> List[str]:
        """Platform account ids the webhook is addressed to, in body order."""
        ...

    @abstractmethod
    def normalize(self, body: Dict[str, Any], destination: str) -> List[InboundEvent]:
        """Translate the part of a webhook body addressed to one account into events."""
        ...

    @abstractmethod
    def compute_signature(self, raw_body: bytes, secret: str) -> str:
        """Expected signature header value for a body."""
        ...

    def verify_signature(self, raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
        """
        Check a webhook signature against the channel secret.

        Args:
            raw_body: Exact request bytes as received
            signature: Signature header value
            secret: Connected channel's secret

        Returns:
            True only when both are present and the signature matches
        """
        if not signature or not secret:
            return False
        expected = self.compute_signature(raw_body, secret)
        return hmac.compare_digest(expected.encode(), signature.strip().encode())

    @staticmethod
    def _hmac_sha256(raw_body: bytes, secret: str) -> bytes:
        return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()

    # ── Outbound ───────────────────────────────────────────────────

    @abstractmethod
    async def send_message(self, credentials: ChannelCredentials, message: ChannelMessage) -> ChannelResponse:
        """Send a text message."""
        ...

    @abstractmethod
    async def get_profile(self, credentials: ChannelCredentials, user_id: str) -> Optional[UserProfile]:
        """Fetch a user's profile; None if unavailable."""
        ...
