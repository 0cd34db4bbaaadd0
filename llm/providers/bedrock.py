"""
AWS Bedrock LLM Provider.
"""

import asyncio
import json
import logging
from typing import Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class BedrockProvider:
    """
    AWS Bedrock LLM provider.

    Supports Claude models via Bedrock.
    """

    DEFAULT_MODEL = "us.anthropic.claude-sonnet-4-20250514-v1:0"

    def __init__(
        self,
        model_id: str = DEFAULT_MODEL,
        region: str = "us-east-1",
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ):
        """
        Initialize Bedrock provider.

        Args:
            model_id: Bedrock model ID
            region: AWS region
            max_tokens: Maximum tokens for response
            temperature: Generation temperature
        """
        self.model_id = model_id
        self.region = region
        self.max_tokens = max_tokens
        self.temperature = temperature

        self._client = boto3.client("bedrock-runtime", region_name=region)
        logger.info(f"Bedrock provider initialized: {model_id} in {region}")

    def generate(self, prompt: str, system: Optional[str] = None, model_id: Optional[str] = None) -> str:
        """
        Generate response from prompt.

        Args:
            prompt: User prompt
            system: System prompt
            model_id: Per-call model override

        Returns:
            Generated response, possibly empty
        """
        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": prompt}]}
            ],
        }
        if system:
            body["system"] = system

        try:
            response = self._client.invoke_model(
                modelId=model_id or self.model_id,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
        except ClientError as e:
            logger.error(f"Bedrock API error: {e}")
            raise

        response_body = json.loads(response["body"].read())
        if response_body.get("content"):
            return response_body["content"][0]["text"].strip()

        logger.warning("Empty response from Bedrock")
        return ""

    async def agenerate(self, prompt: str, system: Optional[str] = None, model_id: Optional[str] = None) -> str:
        """Async wrapper; Bedrock has no native async client."""
        return await asyncio.to_thread(self.generate, prompt, system, model_id)
