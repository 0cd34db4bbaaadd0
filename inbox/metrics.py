"""
Domain metrics for the inbox pipeline.
"""

from prometheus_client import Counter, Histogram

WEBHOOK_EVENTS = Counter(
    "inbox_webhook_events_total",
    "Normalized inbound events",
    ["platform", "outcome"],
)
SIGNATURE_FAILURES = Counter(
    "inbox_signature_failures_total",
    "Webhooks rejected for a bad signature",
    ["platform"],
)
ESCALATIONS = Counter(
    "inbox_escalations_total",
    "Conversations handed to human staff",
    ["reason"],
)
FALLBACK_REPLIES = Counter(
    "inbox_fallback_replies_total",
    "Replies served from a fallback message",
    ["category"],
)
DELIVERY_FAILURES = Counter(
    "inbox_delivery_failures_total",
    "Outbound platform sends that failed",
    ["platform"],
)
RETRIEVAL_LATENCY = Histogram(
    "inbox_retrieval_duration_seconds",
    "Knowledge retrieval latency",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)
LLM_LATENCY = Histogram(
    "inbox_llm_duration_seconds",
    "LLM generation latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 25.0],
)


def record_webhook_event(platform: str, outcome: str):
    WEBHOOK_EVENTS.labels(platform=platform, outcome=outcome).inc()


def record_signature_failure(platform: str):
    SIGNATURE_FAILURES.labels(platform=platform).inc()


def record_escalation(reason: str):
    ESCALATIONS.labels(reason=reason).inc()


def record_fallback(category: str):
    FALLBACK_REPLIES.labels(category=category).inc()


def record_delivery_failure(platform: str):
    DELIVERY_FAILURES.labels(platform=platform).inc()


def record_retrieval_latency(seconds: float):
    RETRIEVAL_LATENCY.observe(seconds)


def record_llm_latency(seconds: float):
    LLM_LATENCY.observe(seconds)
