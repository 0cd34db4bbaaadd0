"""
LINE Messaging API channel provider.

Webhooks carry the bot's user id in `destination` and are signed with
base64(HMAC-SHA256(channel_secret, body)) in the X-Line-Signature header.
"""

import base64
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


class LineChannel(ChannelProvider):
    """LINE Official Account via the Messaging API."""

    platform = "line"
    signature_header = "X-Line-Signature"

    BASE_URL = "https://api.line.me/v2/bot"
    DATA_URL = "https://api-data.line.me/v2/bot"
    MAX_TEXT_LENGTH = 5000

    def destinations(self, body: Dict[str, Any]) -> List[str]:
        destination = body.get("destination")
        return [str(destination)] if destination else []

    def compute_signature(self, raw_body: bytes, secret: str) -> str:
        return base64.b64encode(self._hmac_sha256(raw_body, secret)).decode("utf-8")

    def normalize(self, body: Dict[str, Any], destination: str) -> List[InboundEvent]:
        events: List[InboundEvent] = []

        for event in body.get("events") or []:
            if event.get("type") != "message":
                continue

            user_id = (event.get("source") or {}).get("userId")
            message = event.get("message") or {}
            if not user_id or not message:
                continue

            message_type = message.get("type")
            normalized = InboundEvent(
                platform=self.platform,
                platform_user_id=user_id,
                type=EventType.TEXT,
                message_id=message.get("id"),
                timestamp=event.get("timestamp"),
                raw=event,
            )

            if message_type == "text":
                normalized.text = message.get("text", "")
            elif message_type == "image":
                normalized.type = EventType.IMAGE
                provider = message.get("contentProvider") or {}
                normalized.image_url = provider.get("originalContentUrl") or (
                    f"{self.DATA_URL}/message/{message.get('id')}/content"
                )
            elif message_type == "sticker":
                normalized.type = EventType.STICKER
                normalized.sticker_id = message.get("stickerId")
            else:
                logger.debug(f"Skipping unsupported LINE message type: {message_type}")
                continue

            events.append(normalized)

        return events

    async def send_message(self, credentials: ChannelCredentials, message: ChannelMessage) -> ChannelResponse:
        url = f"{self.BASE_URL}/message/push"
        headers = {
            "Authorization": f"Bearer {credentials.access_token}",
            "Content-Type": "application/json",
        }
        payload = {
            "to": message.to,
            "messages": [{"type": "text", "text": message.content[: self.MAX_TEXT_LENGTH]}],
        }
        try:
            async with self._client() as client:
                resp = await client.post(url, json=payload, headers=headers)
                resp.raise_for_status()
                return ChannelResponse(success=True, message_id=resp.headers.get("x-line-request-id"))
        except Exception as e:
            logger.error(f"LINE push failed: {e}")
            return ChannelResponse(success=False, error=str(e))

    async def get_profile(self, credentials: ChannelCredentials, user_id: str) -> Optional[UserProfile]:
        url = f"{self.BASE_URL}/profile/{user_id}"
        headers = {"Authorization": f"Bearer {credentials.access_token}"}
        try:
            async with self._client() as client:
                resp = await client.get(url, headers=headers)
                resp.raise_for_status()
                data = resp.json()
                return UserProfile(
                    display_name=data.get("displayName"),
                    picture_url=data.get("pictureUrl"),
                )
        except Exception as e:
            logger.warning(f"LINE profile lookup failed for {user_id}: {e}")
            return None
