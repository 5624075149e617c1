"""
Chat completion backend for the hosted completion endpoint, routed through the ApiClient.
"""

from typing import Dict, List

from .api_client import ApiClient, ApiError
from .config import OpenAIConfig
from .llm_base import ChatBackend, LanguageModelError
from .logging_config import get_logger

logger = get_logger(__name__)


class OpenAIChatBackend(ChatBackend):
    """Completion endpoint client that reuses the ApiClient's retry handling."""

    name = 'openai'

    def __init__(self, config: OpenAIConfig, api_client: ApiClient):
        """
        Initialize the completion backend.

        Args:
            config: OpenAIConfig with the API key and endpoint
            api_client: ApiClient used for transport and retries

        Raises:
            LanguageModelError: If no API key is configured
        """
        if not config.api_key:
            raise LanguageModelError('OpenAI API key not configured')
        self.config = config
        self.api_client = api_client

        logger.info(f'Initialized completion backend with model: {config.model}')

    def complete(self, messages: List[Dict[str, str]], model: str, temperature: float, max_tokens: int) -> str:
        request = {
            'model': model,
            'messages': messages,
            'temperature': temperature,
            'max_tokens': max_tokens,
        }
        try:
            response = self.api_client.post(self.config.completions_url,
                                            request,
                                            headers={'Authorization': f'Bearer {self.config.api_key}'})
        except ApiError as e:
            raise LanguageModelError(f'Completion request failed ({e.code}): {e.message}') from e

        try:
            content = response['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError) as e:
            raise LanguageModelError(f'Unexpected completion response shape: {e}') from e

        logger.debug(f'Completion generated successfully (length: {len(content or "")})')
        return content or ''

    def health_check(self) -> bool:
        try:
            reply = self.complete([{'role': 'user', 'content': 'Hi'}], self.config.model, 0.0, 5)
            return len(reply.strip()) > 0
        except LanguageModelError as e:
            logger.error(f'Completion backend health check failed: {e}')
            return False
