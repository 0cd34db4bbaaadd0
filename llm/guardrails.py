"""
Escalation guardrails for generated replies.

Post-generation checks that decide whether a conversation should be
handed to human staff, based on what the assistant said and what the
customer wrote.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class EscalationCheck:
    """Result of the escalation scan."""
    escalate: bool = False
    reasons: List[str] = field(default_factory=list)


class EscalationDetector:
    """
    Flags replies that need a human.

    Checks:
    1. Assistant deferred to staff (or returned the strict fallback line)
    2. Customer is complaining, angry, or asked for a person
    """

    ASSISTANT_PHRASES = {
        "contact staff",
        "talk to human",
        "talk to a human",
        "human agent",
        "ติดต่อเจ้าหน้าที่",
        "เจ้าหน้าที่จะติดต่อกลับ",
        "ส่งต่อให้เจ้าหน้าที่",
    }

    CUSTOMER_PHRASES = {
        "complain",
        "angry",
        "talk to human",
        "talk to a human",
        "speak to a human",
        "real person",
        "ร้องเรียน",
        "โกรธ",
        "ไม่พอใจ",
        "ขอคุยกับเจ้าหน้าที่",
        "ขอคุยกับคน",
    }

    def check(self, generated: str, user_message: str, fallback_message: Optional[str] = None) -> EscalationCheck:
        """
        Scan a generated reply and the triggering message.

        Args:
            generated: Model output
            user_message: Customer message that prompted it
            fallback_message: Configured strict-mode fallback line

        Returns:
            EscalationCheck with matched reasons
        """
        result = EscalationCheck()
        generated_lower = (generated or "").lower()
        user_lower = (user_message or "").lower()

        if any(phrase in generated_lower for phrase in self.ASSISTANT_PHRASES):
            result.reasons.append("assistant_deferred")
        elif fallback_message and fallback_message.strip().lower() in generated_lower:
            result.reasons.append("assistant_deferred")

        if any(phrase in user_lower for phrase in self.CUSTOMER_PHRASES):
            result.reasons.append("user_complaint")

        result.escalate = bool(result.reasons)
        if result.escalate:
            logger.info(f"Escalation triggers: {result.reasons}")
        return result
