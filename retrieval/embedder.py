"""
Embedding Service for the Clinic Inbox.

Generates embeddings using OpenAI or AWS Bedrock Titan. Client calls are
blocking SDK calls and run in a worker thread.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)


class EmbeddingProvider(Enum):
    """Supported embedding providers."""
    BEDROCK_TITAN = "bedrock_titan"
    OPENAI = "openai"


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: EmbeddingProvider = EmbeddingProvider.OPENAI
    model_id: str = "text-embedding-3-small"
    dimension: int = 1536
    aws_region: str = "us-east-1"
    openai_api_key: Optional[str] = None


class EmbeddingService:
    """
    Service for generating text embeddings.

    Supports:
    - OpenAI embeddings
    - AWS Bedrock Titan embeddings
    """

    MAX_INPUT_CHARS = 25000

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()
        self._client = None
        self._openai_client = None

        self._initialize_client()

    def _initialize_client(self):
        """Initialize the appropriate client based on provider."""
        if self.config.provider == EmbeddingProvider.BEDROCK_TITAN:
            self._initialize_bedrock()
        elif self.config.provider == EmbeddingProvider.OPENAI:
            self._initialize_openai()

    def _initialize_bedrock(self):
        """Initialize AWS Bedrock client."""
        import boto3
        self._client = boto3.client("bedrock-runtime", region_name=self.config.aws_region)
        logger.info(f"Bedrock embedding client initialized in {self.config.aws_region}")

    def _initialize_openai(self):
        """Initialize OpenAI client."""
        from openai import OpenAI
        self._openai_client = OpenAI(api_key=self.config.openai_api_key)
        logger.info("OpenAI embedding client initialized")

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Input text

        Returns:
            Embedding vector
        """
        text = text[: self.MAX_INPUT_CHARS]
        if self.config.provider == EmbeddingProvider.BEDROCK_TITAN:
            return await asyncio.to_thread(self._embed_bedrock, text)
        if self.config.provider == EmbeddingProvider.OPENAI:
            return await asyncio.to_thread(self._embed_openai, text)
        raise ValueError(f"Unsupported provider: {self.config.provider}")

    def _embed_bedrock(self, text: str) -> List[float]:
        """Generate embedding using Bedrock Titan."""
        try:
            response = self._client.invoke_model(
                modelId=self.config.model_id,
                body=json.dumps({"inputText": text}),
                contentType="application/json",
                accept="application/json",
            )
            embedding = json.loads(response["body"].read())["embedding"]
            logger.debug(f"Generated Bedrock embedding, dim={len(embedding)}")
            return embedding
        except Exception as e:
            logger.error(f"Bedrock embedding failed: {e}")
            raise

    def _embed_openai(self, text: str) -> List[float]:
        """Generate embedding using OpenAI."""
        try:
            response = self._openai_client.embeddings.create(model=self.config.model_id, input=text)
            embedding = response.data[0].embedding
            logger.debug(f"Generated OpenAI embedding, dim={len(embedding)}")
            return embedding
        except Exception as e:
            logger.error(f"OpenAI embedding failed: {e}")
            raise

    def get_dimension(self) -> int:
        """Get the embedding dimension for the current model."""
        dimensions = {
            "amazon.titan-embed-text-v2:0": 1024,
            "amazon.titan-embed-text-v1": 1536,
            "text-embedding-3-small": 1536,
            "text-embedding-3-large": 3072,
            "text-embedding-ada-002": 1536,
        }
        return dimensions.get(self.config.model_id, self.config.dimension)
