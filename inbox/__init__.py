"""
Inbox core for the Clinic Inbox.

Identity resolution, conversation threading, the webhook ingestion
pipeline, escalation control, reply dispatch and the reply queue.
"""
