"""
Centralized configuration for the Inbox service.

Process settings are loaded once from environment variables via .env file.
AI behaviour settings live in the ai_settings table and are read fresh on
every turn through AISettings.from_mapping().
"""

from dataclasses import dataclass, fields
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()

# Headroom for database work around the timed external calls in a reply job
REPLY_JOB_MARGIN_SECONDS = 5.0


class Settings(BaseSettings):
    """Application settings."""

    # Brand / persona
    clinic_name: str = Field(default="Aesthetic Clinic", env="CLINIC_NAME")

    # LLM provider selection (resolved once at start-up)
    llm_provider: str = Field(default="openai", env="LLM_PROVIDER")  # openai | bedrock
    max_tokens: int = Field(default=1024, env="MAX_TOKENS")
    temperature: float = Field(default=0.3, env="TEMPERATURE")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    openai_embed_model: str = Field(default="text-embedding-3-small", env="OPENAI_EMBED_MODEL")
    openai_llm_model: str = Field(default="gpt-4o-mini", env="OPENAI_LLM_MODEL")

    # AWS / Bedrock
    aws_region: str = Field(default="us-east-1", env="AWS_REGION")
    bedrock_embed_model_id: str = Field(
        default="amazon.titan-embed-text-v2:0", env="BEDROCK_EMBED_MODEL_ID"
    )
    bedrock_llm_model_id: str = Field(
        default="us.anthropic.claude-sonnet-4-20250514-v1:0", env="BEDROCK_LLM_MODEL_ID"
    )

    # Pinecone
    pinecone_api_key: str = Field(default="", env="PINECONE_API_KEY")
    pinecone_index_name: str = Field(default="clinic-knowledge", env="PINECONE_INDEX_NAME")
    pinecone_cloud: str = Field(default="aws", env="PINECONE_CLOUD")
    pinecone_region: str = Field(default="us-east-1", env="PINECONE_REGION")

    # Timeouts (seconds)
    generation_timeout_seconds: float = Field(default=25.0, env="GENERATION_TIMEOUT_SECONDS")
    retrieval_timeout_seconds: float = Field(default=10.0, env="RETRIEVAL_TIMEOUT_SECONDS")
    delivery_timeout_seconds: float = Field(default=10.0, env="DELIVERY_TIMEOUT_SECONDS")

    # Reply queue
    reply_workers: int = Field(default=2, env="REPLY_WORKERS")
    reply_job_timeout_seconds: float = Field(default=60.0, env="REPLY_JOB_TIMEOUT_SECONDS")

    # Platforms
    facebook_verify_token: Optional[str] = Field(default=None, env="FACEBOOK_VERIFY_TOKEN")
    facebook_graph_version: str = Field(default="v18.0", env="FACEBOOK_GRAPH_VERSION")

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./inbox.db", env="DATABASE_URL")

    # API
    api_title: str = Field(default="Clinic Inbox API", env="API_TITLE")
    api_version: str = Field(default="1.0.0", env="API_VERSION")
    api_key: Optional[str] = Field(default=None, env="API_KEY")
    jwt_secret_key: str = Field(default="change-me-in-production", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    cors_origins: str = Field(default="*", env="CORS_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def is_bedrock(self) -> bool:
        return self.llm_provider.lower() == "bedrock"

    @property
    def is_openai(self) -> bool:
        return self.llm_provider.lower() == "openai"

    @property
    def embed_model_id(self) -> str:
        if self.is_bedrock:
            return self.bedrock_embed_model_id
        return self.openai_embed_model

    @property
    def reply_job_budget_seconds(self) -> float:
        """Reply job timeout, never shorter than retrieval + generation + two sends."""
        minimum = (
            self.retrieval_timeout_seconds
            + self.generation_timeout_seconds
            + 2 * self.delivery_timeout_seconds
            + REPLY_JOB_MARGIN_SECONDS
        )
        return max(self.reply_job_timeout_seconds, minimum)

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


DEFAULT_FALLBACK_MESSAGE = (
    "ขออภัยค่ะ ขณะนี้ยังไม่มีข้อมูลในเรื่องนี้ "
    "เดี๋ยวเจ้าหน้าที่จะติดต่อกลับโดยเร็วที่สุดนะคะ 🙏"
)


# Upper bound for the fine-tuned recency window; larger values overflow timedelta
MAX_RECENT_KNOWLEDGE_DAYS = 3650


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _as_str(value: Any, default: Optional[str]) -> Optional[str]:
    if value is None:
        return default
    text = str(value)
    return text if text.strip() else default


@dataclass
class AISettings:
    """Typed view over the flat ai_settings key/value store."""

    strict_mode: bool = True
    require_knowledge: bool = True
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    min_confidence: float = 0.5
    match_count: int = 5
    use_finetuned_model: bool = False
    finetuned_model: Optional[str] = None
    recent_knowledge_days: int = 7
    max_context_chars: int = 12000
    history_window: int = 5
    persona: Optional[str] = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "AISettings":
        """Build from raw store values, falling back to defaults per key."""
        defaults = cls()
        return cls(
            strict_mode=_as_bool(values.get("strict_mode"), defaults.strict_mode),
            require_knowledge=_as_bool(values.get("require_knowledge"), defaults.require_knowledge),
            fallback_message=_as_str(values.get("fallback_message"), defaults.fallback_message),
            min_confidence=_as_float(values.get("min_confidence"), defaults.min_confidence),
            match_count=max(1, _as_int(values.get("match_count"), defaults.match_count)),
            use_finetuned_model=_as_bool(values.get("use_finetuned_model"), defaults.use_finetuned_model),
            finetuned_model=_as_str(values.get("finetuned_model"), None),
            recent_knowledge_days=min(
                MAX_RECENT_KNOWLEDGE_DAYS,
                max(0, _as_int(values.get("recent_knowledge_days"), defaults.recent_knowledge_days)),
            ),
            max_context_chars=_as_int(values.get("max_context_chars"), defaults.max_context_chars),
            history_window=max(0, _as_int(values.get("history_window"), defaults.history_window)),
            persona=_as_str(values.get("persona"), None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
