"""
Messaging platform providers.
"""

from typing import Dict, Optional

import httpx

from .base import ChannelMessage, ChannelProvider, ChannelResponse, EventType, InboundEvent, UserProfile
from .facebook import FacebookChannel
from .line import LineChannel


def build_channel_providers(
    facebook_graph_version: str = "v18.0",
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, ChannelProvider]:
    """Registry of supported platforms keyed by platform name."""
    return {
        LineChannel.platform: LineChannel(timeout=timeout, transport=transport),
        FacebookChannel.platform: FacebookChannel(
            graph_version=facebook_graph_version, timeout=timeout, transport=transport
        ),
    }


__all__ = [
    "ChannelMessage",
    "ChannelProvider",
    "ChannelResponse",
    "EventType",
    "InboundEvent",
    "UserProfile",
    "FacebookChannel",
    "LineChannel",
    "build_channel_providers",
]
