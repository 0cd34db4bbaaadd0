"""
Error taxonomy for the inbox pipeline.

Webhook-facing errors map onto HTTP status codes in api.routes.webhooks;
upstream errors never reach the customer and are turned into fallback
replies by the response generator.
"""

from typing import Optional


class InboxError(Exception):
    """Base class for inbox errors."""


class UnsupportedPlatform(InboxError):
    """Webhook arrived for a platform with no registered adapter."""


class MalformedPayload(InboxError):
    """Webhook body is not valid JSON or lacks routing information."""


class ChannelNotConfigured(InboxError):
    """No connected channel matches the webhook destination."""


class AuthenticationError(InboxError):
    """Webhook signature is missing or does not match the channel secret."""


class DataStoreError(InboxError):
    """Persistence failed; the current event cannot be processed."""


class NotFound(InboxError):
    """Requested record does not exist."""


class AIModeConflict(InboxError):
    """Operation conflicts with the conversation's current ai_mode."""


class UpstreamCategory:
    QUOTA = "quota"
    CREDENTIALS = "credentials"
    TIMEOUT = "timeout"
    GENERIC = "generic"


class UpstreamServiceError(InboxError):
    """A model, embedding or vector service call failed."""

    def __init__(self, message: str, category: str = UpstreamCategory.GENERIC, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.category = category
        self.cause = cause


_QUOTA_MARKERS = ("quota", "rate limit", "ratelimit", "429", "throttl", "insufficient_quota")
_CREDENTIAL_MARKERS = (
    "api key",
    "api_key",
    "apikey",
    "authentication",
    "unauthorized",
    "401",
    "credential",
    "permission",
    "access denied",
    "accessdenied",
)


def classify_upstream_error(exc: BaseException) -> str:
    """Best-effort classification of a provider exception."""
    if isinstance(exc, UpstreamServiceError):
        return exc.category

    name = type(exc).__name__.lower()
    text = f"{name} {exc}".lower()

    if "timeout" in name:
        return UpstreamCategory.TIMEOUT
    if any(marker in text for marker in _QUOTA_MARKERS):
        return UpstreamCategory.QUOTA
    if any(marker in text for marker in _CREDENTIAL_MARKERS):
        return UpstreamCategory.CREDENTIALS
    return UpstreamCategory.GENERIC
