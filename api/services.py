"""
Service initialization and dependency injection for the Inbox API.

Creates and manages all service instances used by the API. One container
is built per application and stored on app.state; collaborators can be
injected for tests or alternative deployments.
"""

import logging
from typing import Dict, Optional

from fastapi import Request

from api.channels import build_channel_providers
from api.channels.base import ChannelProvider
from api.handoff.manager import HandoffManager
from api.realtime.connection_manager import ConnectionManager
from config.settings import REPLY_JOB_MARGIN_SECONDS, Settings, get_settings
from database.session import Database
from inbox.conversation import ConversationResolver
from inbox.dispatcher import ReplyDispatcher
from inbox.identity import IdentityResolver
from inbox.pipeline import InboxPipeline
from inbox.worker import ReplyQueue
from llm.orchestrator import ResponseGenerator
from llm.providers import build_provider
from retrieval.embedder import EmbeddingConfig, EmbeddingProvider, EmbeddingService
from retrieval.knowledge import KnowledgeRetriever
from retrieval.knowledge_store import KnowledgeStore
from retrieval.pinecone_client import PineconeClient, PineconeConfig

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        embedding_service=None,
        vector_index=None,
        llm_provider=None,
        channel_providers: Optional[Dict[str, ChannelProvider]] = None,
        use_reply_queue: bool = True,
    ):
        """
        Args:
            settings: Process settings (defaults to get_settings())
            embedding_service: Pre-built embedding service
            vector_index: Pre-built vector index
            llm_provider: Pre-built generation provider
            channel_providers: Platform registry keyed by platform name
            use_reply_queue: Run AI replies on background workers; inline when False
        """
        self.settings = settings or get_settings()
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.llm_provider = llm_provider
        self.channel_providers = channel_providers
        self.use_reply_queue = use_reply_queue

        self.database: Optional[Database] = None
        self.connection_manager: Optional[ConnectionManager] = None
        self.retriever: Optional[KnowledgeRetriever] = None
        self.knowledge_store: Optional[KnowledgeStore] = None
        self.generator: Optional[ResponseGenerator] = None
        self.handoff: Optional[HandoffManager] = None
        self.dispatcher: Optional[ReplyDispatcher] = None
        self.pipeline: Optional[InboxPipeline] = None
        self.reply_queue: Optional[ReplyQueue] = None
        self._initialized = False
        self._started = False

    def initialize(self):
        """Build all services that were not injected."""
        if self._initialized:
            return

        logger.info(f"Initializing services with provider: {self.settings.llm_provider}")

        self.database = Database(self.settings.database_url)
        self.connection_manager = ConnectionManager()

        if self.embedding_service is None:
            self._init_embedding()
        if self.vector_index is None:
            self._init_pinecone()
        if self.llm_provider is None:
            self._init_llm()
        if self.channel_providers is None:
            self.channel_providers = build_channel_providers(
                facebook_graph_version=self.settings.facebook_graph_version,
                timeout=self.settings.delivery_timeout_seconds,
            )

        self._init_pipeline()
        self._initialized = True
        logger.info("All services initialized")

    def _init_embedding(self):
        """Initialize embedding service."""
        s = self.settings
        if s.is_bedrock:
            provider = EmbeddingProvider.BEDROCK_TITAN
        else:
            provider = EmbeddingProvider.OPENAI

        config = EmbeddingConfig(
            provider=provider,
            model_id=s.embed_model_id,
            aws_region=s.aws_region,
            openai_api_key=s.openai_api_key,
        )
        try:
            self.embedding_service = EmbeddingService(config)
            logger.info(f"Embedding service ready: {provider.value}")
        except Exception as e:
            logger.warning(f"Embedding service unavailable, retrieval degraded: {e}")

    def _init_pinecone(self):
        """Initialize Pinecone client."""
        s = self.settings
        if not s.pinecone_api_key:
            logger.warning("PINECONE_API_KEY not set, vector search disabled")
            return

        config = PineconeConfig(
            api_key=s.pinecone_api_key,
            index_name=s.pinecone_index_name,
            cloud=s.pinecone_cloud,
            region=s.pinecone_region,
            dimension=self.embedding_service.get_dimension() if self.embedding_service else 1536,
        )
        try:
            self.vector_index = PineconeClient(config)
            logger.info("Pinecone client ready")
        except Exception as e:
            logger.warning(f"Pinecone unavailable, vector search disabled: {e}")

    def _init_llm(self):
        """Initialize the generation provider."""
        try:
            self.llm_provider = build_provider(self.settings)
        except ValueError:
            raise
        except Exception as e:
            logger.warning(f"LLM provider unavailable, replies will fall back: {e}")

    def _init_pipeline(self):
        """Wire the inbox pipeline."""
        s = self.settings
        session_factory = self.database.session_factory

        self.retriever = KnowledgeRetriever(
            session_factory,
            self.embedding_service,
            self.vector_index,
            timeout=s.retrieval_timeout_seconds,
        )
        self.knowledge_store = KnowledgeStore(session_factory, self.embedding_service, self.vector_index)
        self.generator = ResponseGenerator(
            session_factory,
            self.retriever,
            self.llm_provider,
            generation_timeout=s.generation_timeout_seconds,
            clinic_name=s.clinic_name,
        )
        self.handoff = HandoffManager(session_factory, notifier=self.connection_manager)
        self.dispatcher = ReplyDispatcher(self.channel_providers)
        self.pipeline = InboxPipeline(
            session_factory,
            providers=self.channel_providers,
            identity_resolver=IdentityResolver(session_factory),
            conversation_resolver=ConversationResolver(session_factory),
            generator=self.generator,
            handoff=self.handoff,
            dispatcher=self.dispatcher,
            notifier=self.connection_manager,
        )
        if self.use_reply_queue:
            job_timeout = s.reply_job_budget_seconds
            if job_timeout > s.reply_job_timeout_seconds:
                logger.warning(
                    f"REPLY_JOB_TIMEOUT_SECONDS={s.reply_job_timeout_seconds} is below the "
                    f"retrieval, generation and delivery budgets; using {job_timeout}s"
                )
            self.reply_queue = ReplyQueue(
                self.pipeline.reply,
                workers=s.reply_workers,
                job_timeout=job_timeout,
                on_failure=self.pipeline.reply_failed,
                failure_timeout=2 * s.delivery_timeout_seconds + REPLY_JOB_MARGIN_SECONDS,
            )
            self.pipeline.attach_queue(self.reply_queue)

    async def start(self):
        """Create tables and start background workers."""
        self.initialize()
        if self._started:
            return
        await self.database.create_all()
        if self.reply_queue is not None:
            await self.reply_queue.start()
        self._started = True

    async def stop(self):
        if not self._started:
            return
        if self.reply_queue is not None:
            await self.reply_queue.stop()
        await self.database.close()
        self._started = False

    @property
    def session_factory(self):
        return self.database.session_factory

    @property
    def is_ready(self) -> bool:
        return self._started and self.pipeline is not None

    def health(self) -> dict:
        """Return health status of all services."""
        return {
            "initialized": self._initialized,
            "database": self._started,
            "embedding": self.embedding_service is not None,
            "vector_index": self.vector_index is not None,
            "llm": self.llm_provider is not None,
            "reply_queue": bool(self.reply_queue and self.reply_queue.is_running),
            "console_connections": self.connection_manager.active_count if self.connection_manager else 0,
        }


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the application's services."""
    return request.app.state.services
