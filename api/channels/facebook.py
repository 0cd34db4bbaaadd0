"""
Facebook Messenger channel provider.

Page webhooks carry the page id in entry[].id and are signed with
"sha256=" + hex(HMAC-SHA256(app_secret, body)) in X-Hub-Signature-256.
"""

import logging
from typing import Any, Dict, List, Optional

from .base import (
    ChannelCredentials,
    ChannelMessage,
    ChannelProvider,
    ChannelResponse,
    EventType,
    InboundEvent,
    UserProfile,
)

logger = logging.getLogger(__name__)


class FacebookChannel(ChannelProvider):
    """Facebook Page inbox via the Graph API."""

    platform = "facebook"
    signature_header = "X-Hub-Signature-256"

    MAX_TEXT_LENGTH = 2000

    def __init__(self, graph_version: str = "v18.0", **kwargs):
        super().__init__(**kwargs)
        self.base_url = f"https://graph.facebook.com/{graph_version}"

    def destinations(self, body: Dict[str, Any]) -> List[str]:
        """Page ids in entry order; one delivery can batch several pages."""
        if body.get("object") != "page":
            return []
        pages: List[str] = []
        for entry in body.get("entry") or []:
            page_id = str(entry["id"]) if entry.get("id") else None
            if page_id and page_id not in pages:
                pages.append(page_id)
        return pages

    def compute_signature(self, raw_body: bytes, secret: str) -> str:
        return "sha256=" + self._hmac_sha256(raw_body, secret).hex()

    def normalize(self, body: Dict[str, Any], destination: str) -> List[InboundEvent]:
        events: List[InboundEvent] = []
        if body.get("object") != "page":
            return events

        for entry in body.get("entry") or []:
            # Entries for other pages are routed under their own channel
            if str(entry.get("id")) != destination:
                continue

            for messaging in entry.get("messaging") or []:
                message = messaging.get("message")
                sender_id = (messaging.get("sender") or {}).get("id")
                if not message or not sender_id:
                    continue
                if message.get("is_echo"):
                    continue

                normalized = InboundEvent(
                    platform=self.platform,
                    platform_user_id=str(sender_id),
                    type=EventType.TEXT,
                    message_id=message.get("mid"),
                    timestamp=messaging.get("timestamp"),
                    raw=messaging,
                )

                attachments = message.get("attachments") or []
                if message.get("sticker_id"):
                    normalized.type = EventType.STICKER
                    normalized.sticker_id = str(message["sticker_id"])
                elif attachments:
                    attachment = attachments[0]
                    if attachment.get("type") != "image":
                        logger.debug(f"Skipping unsupported attachment: {attachment.get('type')}")
                        continue
                    normalized.type = EventType.IMAGE
                    normalized.image_url = (attachment.get("payload") or {}).get("url")
                elif message.get("text") is not None:
                    normalized.text = message["text"]
                else:
                    continue

                events.append(normalized)

        return events

    async def send_message(self, credentials: ChannelCredentials, message: ChannelMessage) -> ChannelResponse:
        url = f"{self.base_url}/me/messages"
        payload = {
            "recipient": {"id": message.to},
            "messaging_type": "RESPONSE",
            "message": {"text": message.content[: self.MAX_TEXT_LENGTH]},
        }
        try:
            async with self._client() as client:
                resp = await client.post(
                    url, json=payload, params={"access_token": credentials.access_token}
                )
                resp.raise_for_status()
                data = resp.json()
                return ChannelResponse(success=True, message_id=data.get("message_id"))
        except Exception as e:
            logger.error(f"Facebook send failed: {e}")
            return ChannelResponse(success=False, error=str(e))

    async def get_profile(self, credentials: ChannelCredentials, user_id: str) -> Optional[UserProfile]:
        url = f"{self.base_url}/{user_id}"
        params = {"fields": "first_name,last_name,profile_pic", "access_token": credentials.access_token}
        try:
            async with self._client() as client:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                data = resp.json()
                name = " ".join(p for p in (data.get("first_name"), data.get("last_name")) if p)
                return UserProfile(display_name=name or None, picture_url=data.get("profile_pic"))
        except Exception as e:
            logger.warning(f"Facebook profile lookup failed for {user_id}: {e}")
            return None
