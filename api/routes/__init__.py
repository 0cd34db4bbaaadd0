"""
API Routes for the Clinic Inbox.
"""

from . import ai_settings, auth, channels, console, knowledge, realtime, webhooks

__all__ = ["ai_settings", "auth", "channels", "console", "knowledge", "realtime", "webhooks"]
