"""
OpenAI LLM Provider.
"""

import logging
from typing import Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class OpenAIProvider:
    """
    OpenAI LLM provider.

    Supports GPT-4 class models and fine-tuned variants via model_id override.
    """

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_id: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        timeout: Optional[float] = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            model_id: Default model ID
            max_tokens: Maximum tokens
            temperature: Generation temperature
            timeout: Client-side request timeout in seconds
        """
        client_kwargs = {"max_retries": 0}
        if api_key:
            client_kwargs["api_key"] = api_key
        if timeout:
            client_kwargs["timeout"] = timeout
        self._client = AsyncOpenAI(**client_kwargs)

        self.model_id = model_id
        self.max_tokens = max_tokens
        self.temperature = temperature

        logger.info(f"OpenAI provider initialized: {model_id}")

    async def agenerate(
        self,
        prompt: str,
        system: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> str:
        """
        Generate a response.

        Args:
            prompt: User prompt
            system: System prompt
            model_id: Per-call model override (e.g. a fine-tuned model)

        Returns:
            Generated text, possibly empty
        """
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._client.chat.completions.create(
                model=model_id or self.model_id,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            logger.error(f"OpenAI generation failed: {e}")
            raise

        content = response.choices[0].message.content if response.choices else None
        return (content or "").strip()
