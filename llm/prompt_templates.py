"""
Prompt Templates for the Clinic Inbox.

Builds the system prompt (persona, strict knowledge rules, knowledge
context) and the user prompt (recent history plus the new message).
"""

from enum import Enum
from typing import Iterable, List, Optional

from config.settings import AISettings


class PromptType(Enum):
    """Types of prompts."""
    CONSULTANT = "consultant"
    FINETUNED = "finetuned"


class FallbackCategory:
    QUOTA = "quota"
    CREDENTIALS = "credentials"
    GENERIC = "generic"


# Customer-facing replies when generation cannot complete
FALLBACK_MESSAGES = {
    FallbackCategory.QUOTA: "⚠️ ระบบ AI ใช้งานเกินโควตาชั่วคราว กรุณารอสักครู่ เจ้าหน้าที่จะติดต่อกลับค่ะ",
    FallbackCategory.CREDENTIALS: "⚠️ ระบบ AI ยังไม่พร้อมใช้งาน (ไม่มี API Key) กรุณาติดต่อเจ้าหน้าที่ค่ะ",
    FallbackCategory.GENERIC: "ขออภัยค่ะ ระบบ AI ขัดข้องชั่วคราว เดี๋ยวเจ้าหน้าที่จะมาตอบให้นะคะ 🙏",
}

SPEAKER_LABELS = {
    "user": "User",
    "ai": "Assistant",
    "agent": "Staff",
}


class PromptTemplates:
    """
    Manages prompt templates for the clinic consultant.

    Templates are designed for an aesthetic clinic inbox with a
    booking focus and strict knowledge grounding.
    """

    SYSTEM_PROMPTS = {
        PromptType.CONSULTANT: """You are the Aesthetic Consultant for {clinic_name}, answering customers in a chat inbox.

Your role:
1. Answer questions about treatments, prices, promotions and opening hours
2. Be warm, polite and concise
3. Guide interested customers towards booking a consultation

Guidelines:
- Reply in the customer's language (Thai customers get Thai with polite particles)
- Never diagnose medical or skin conditions; suggest an in-person assessment instead
- Never invent prices, doctors, procedures or promotions
- If the customer is upset, complaining, or asks for a person, apologise and say staff will contact them""",

        PromptType.FINETUNED: """You are the Aesthetic Consultant for {clinic_name}.
Answer from what you know about the clinic, and prefer the recent updates below when they apply.
Never diagnose conditions. If the customer asks for a person, say staff will contact them.""",
    }

    STRICT_BLOCK = """STRICT MODE:
- Answer ONLY with information found in the Knowledge Base section.
- If the Knowledge Base does not contain the answer, reply with exactly this line and nothing else:
{fallback_message}"""

    KNOWLEDGE_BLOCK = """Knowledge Base:
{context}"""

    EMPTY_KNOWLEDGE = "(no knowledge base entries available)"

    USER_TEMPLATES = {
        "message": "User: {message}",
        "with_history": """Chat History:
{history}

User: {message}""",
    }

    @classmethod
    def get_system_prompt(cls, prompt_type: PromptType, clinic_name: str = "our clinic") -> str:
        """Get the persona preamble for a prompt type."""
        return cls.SYSTEM_PROMPTS[prompt_type].format(clinic_name=clinic_name)

    @classmethod
    def build_system_prompt(cls, settings: AISettings, context_text: str, clinic_name: str = "our clinic") -> str:
        """
        Build the full system prompt.

        Args:
            settings: Current AI settings (persona, strict mode, fallback line)
            context_text: Assembled knowledge context
            clinic_name: Clinic name for the default persona

        Returns:
            System prompt text
        """
        if settings.persona:
            persona = settings.persona
        elif settings.use_finetuned_model:
            persona = cls.get_system_prompt(PromptType.FINETUNED, clinic_name)
        else:
            persona = cls.get_system_prompt(PromptType.CONSULTANT, clinic_name)

        sections = [persona]
        if settings.strict_mode and not settings.use_finetuned_model:
            sections.append(cls.STRICT_BLOCK.format(fallback_message=settings.fallback_message))

        if context_text or not settings.use_finetuned_model:
            sections.append(cls.KNOWLEDGE_BLOCK.format(context=context_text or cls.EMPTY_KNOWLEDGE))

        return "\n\n".join(sections)

    @staticmethod
    def format_history(messages: Iterable) -> str:
        """Render messages (oldest first) as labelled lines."""
        lines: List[str] = []
        for msg in messages:
            label = SPEAKER_LABELS.get(msg.sender_type, "User")
            lines.append(f"{label}: {msg.content}")
        return "\n".join(lines)

    @classmethod
    def build_user_prompt(cls, message: str, history: Optional[Iterable] = None) -> str:
        history_text = cls.format_history(history or [])
        if history_text:
            return cls.USER_TEMPLATES["with_history"].format(history=history_text, message=message)
        return cls.USER_TEMPLATES["message"].format(message=message)
