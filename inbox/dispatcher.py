"""
Outbound reply delivery.

Pushes a reply through the originating platform. A failed send is
followed by exactly one apology attempt, then logged; delivery problems
never propagate into the pipeline.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from api.channels.base import ChannelCredentials, ChannelMessage, ChannelProvider

from .metrics import record_delivery_failure

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = "ขออภัยค่ะ ระบบขัดข้องชั่วคราว เดี๋ยวเจ้าหน้าที่จะติดต่อกลับนะคะ 🙏"


@dataclass
class DeliveryResult:
    """Outcome of a dispatch."""
    delivered: bool
    fallback_delivered: bool = False
    message_id: Optional[str] = None
    error: Optional[str] = None


class ReplyDispatcher:
    """Sends replies to platform users."""

    def __init__(self, providers: Dict[str, ChannelProvider], apology_message: str = APOLOGY_MESSAGE):
        self.providers = providers
        self.apology_message = apology_message

    async def send(self, channel: ChannelCredentials, platform_user_id: str, text: str) -> DeliveryResult:
        """
        Deliver text to a platform user through a connected channel.

        Args:
            channel: Connected channel holding the access token
            platform_user_id: Recipient id on that platform
            text: Message body

        Returns:
            DeliveryResult describing what reached the user
        """
        provider = self.providers.get(channel.platform)
        if provider is None:
            logger.error(f"No provider registered for platform {channel.platform}")
            return DeliveryResult(delivered=False, error="unsupported platform")

        response = await provider.send_message(channel, ChannelMessage(to=platform_user_id, content=text))
        if response.success:
            return DeliveryResult(delivered=True, message_id=response.message_id)

        record_delivery_failure(channel.platform)
        logger.error(
            f"Reply to {channel.platform}:{platform_user_id} failed ({response.error}), sending apology"
        )

        if text == self.apology_message:
            return DeliveryResult(delivered=False, error=response.error)

        fallback = await provider.send_message(
            channel, ChannelMessage(to=platform_user_id, content=self.apology_message)
        )
        if not fallback.success:
            record_delivery_failure(channel.platform)
            logger.error(f"Apology to {channel.platform}:{platform_user_id} failed: {fallback.error}")

        return DeliveryResult(
            delivered=False,
            fallback_delivered=fallback.success,
            message_id=fallback.message_id,
            error=response.error,
        )
