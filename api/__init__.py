"""
API Module for the Clinic Inbox.

FastAPI application (api.main) with routes for:
- Platform webhooks
- Staff console and live updates
- Channel, knowledge and AI settings administration
"""
