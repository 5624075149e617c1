"""
Amazon Bedrock chat backend with retry logic and error handling.
"""

import random
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .llm_base import ChatBackend, LanguageModelError
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(LanguageModelError):
    """Custom exception for Bedrock LLM errors."""
    pass


def to_bedrock_messages(messages: List[Dict[str, str]]) -> Tuple[List[Dict[str, str]], List[Dict[str, Any]]]:
    """Split chat messages into Bedrock system blocks and conversation turns.

    Consecutive turns of the same role are merged because the Converse API
    requires alternating roles.

    Args:
        messages: Messages with 'role' and 'content' keys

    Returns:
        Tuple of (system blocks, Bedrock-format messages)
    """
    system: List[Dict[str, str]] = []
    turns: List[Dict[str, Any]] = []
    for message in messages:
        content = message.get('content', '')
        if not content.strip():
            continue
        if message.get('role') == 'system':
            system.append({'text': content})
            continue
        role = 'assistant' if message.get('role') == 'assistant' else 'user'
        if turns and turns[-1]['role'] == role:
            turns[-1]['content'].append({'text': content})
        else:
            turns.append({'role': role, 'content': [{'text': content}]})
    return system, turns


class BedrockChatBackend(ChatBackend):
    """Amazon Bedrock LLM client with retry logic and error handling."""

    name = 'bedrock'

    def __init__(self, config: BedrockLLMConfig, client: Optional[Any] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            client: Preconfigured bedrock-runtime client (created if None)
            sleep: Sleep function used for backoff
        """
        self.config = config
        self.model_id = config.model_id
        self._sleep = sleep

        self.bedrock_runtime = client or boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=60,
                read_timeout=300,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def complete(self, messages: List[Dict[str, str]], model: str, temperature: float, max_tokens: int) -> str:
        """
        Generate a reply using Bedrock with retry logic.

        The configured Bedrock model id is used; the generic model name is ignored.

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        system, turns = to_bedrock_messages(messages)
        if not turns:
            raise BedrockLLMError('No conversation turns to send to Bedrock')

        inf_params = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
        }

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts}')

                stream = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                              messages=turns,
                                                              system=system,
                                                              inferenceConfig=inf_params).get('stream')

                msg = ''
                if stream:
                    for event in stream:
                        if 'contentBlockDelta' in event:
                            msg += event['contentBlockDelta']['delta'].get('text', '')

                logger.debug(f'Bedrock LLM response generated successfully (length: {len(msg)})')
                return msg

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    self._sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_messages = [{'role': 'system', 'content': "You are a helpful assistant. Respond with just 'OK'."},
                             {'role': 'user', 'content': 'Hi'}]
            response = self.complete(test_messages, self.model_id, 0.0, 10)
            return len(response.strip()) > 0

        except LanguageModelError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
