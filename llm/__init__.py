"""
LLM Orchestration Module for the Clinic Inbox.

This module handles:
- LLM provider abstraction (OpenAI, Bedrock)
- Prompt template management
- Grounded response generation and escalation detection
"""

from .guardrails import EscalationCheck, EscalationDetector
from .orchestrator import GenerationResult, ResponseGenerator
from .prompt_templates import FALLBACK_MESSAGES, PromptTemplates, PromptType

__all__ = [
    "EscalationCheck",
    "EscalationDetector",
    "FALLBACK_MESSAGES",
    "GenerationResult",
    "PromptTemplates",
    "PromptType",
    "ResponseGenerator",
]
