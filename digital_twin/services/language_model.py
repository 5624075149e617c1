"""
Language model service for companion replies, mood analysis and personality insights.
"""

from typing import Dict, List, Optional

from ..models.core import DigitalTwinProfile, clamp_intensity
from ..utils.api_client import ApiClient
from ..utils.config import AppConfig
from ..utils.json_utils import parse_json_response
from ..utils.llm_base import ChatBackend, LanguageModelError
from ..utils.logging_config import get_logger
from ..utils.offline_llm import OfflineChatBackend
from ..utils.openai_llm import OpenAIChatBackend
from ..utils.prompts import build_insights_prompt, build_mood_analysis_prompt, build_system_message

logger = get_logger(__name__)

NEUTRAL_MOOD = {'mood': 'neutral', 'intensity': 5}


def create_chat_backend(config: AppConfig, api_client: Optional[ApiClient] = None) -> ChatBackend:
    """Select the chat backend once, from configuration.

    ``auto`` uses the completion endpoint when an API key is configured and the
    offline stub otherwise.

    Args:
        config: Application configuration
        api_client: ApiClient for the completion endpoint (required for 'openai')

    Returns:
        ChatBackend instance

    Raises:
        ValueError: If the provider name is unknown or its requirements are missing
    """
    provider = config.llm_provider
    if provider == 'auto':
        provider = 'openai' if config.openai.api_key and api_client is not None else 'offline'

    if provider == 'openai':
        if api_client is None:
            raise ValueError('The openai provider requires an ApiClient')
        return OpenAIChatBackend(config.openai, api_client)
    if provider == 'bedrock':
        from ..utils.bedrock_llm import BedrockChatBackend
        return BedrockChatBackend(config.bedrock_llm)
    if provider == 'offline':
        return OfflineChatBackend()
    raise ValueError(f'Unknown LLM provider: {config.llm_provider}')


class LanguageModelService:
    """Build prompts from the digital twin profile and interpret model answers."""

    def __init__(self, backend: ChatBackend, model: str = 'gpt-4', temperature: float = 0.7, max_tokens: int = 1000):
        """
        Initialize the language model service.

        Args:
            backend: Chat backend chosen at construction time
            model: Default model identifier
            temperature: Default sampling temperature
            max_tokens: Default maximum tokens to generate
        """
        self.backend = backend
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

        logger.info(f'Initialized LanguageModelService with {backend.name} backend')

    def generate_response(self,
                          messages: List[Dict[str, str]],
                          profile: Optional[DigitalTwinProfile] = None,
                          temperature: Optional[float] = None,
                          max_tokens: Optional[int] = None,
                          model: Optional[str] = None) -> str:
        """
        Generate the companion's reply to a conversation.

        Args:
            messages: Conversation messages with 'role' and 'content' keys
            profile: Profile used to build the system message
            temperature: Sampling temperature (service default if None)
            max_tokens: Maximum tokens (service default if None)
            model: Model identifier (service default if None)

        Returns:
            Reply text

        Raises:
            LanguageModelError: If the backend fails
        """
        request_messages = [build_system_message(profile)]
        request_messages.extend({'role': m['role'], 'content': m['content']} for m in messages)
        try:
            return self.backend.complete(request_messages,
                                         model or self.model,
                                         self.temperature if temperature is None else temperature,
                                         max_tokens or self.max_tokens)
        except Exception as e:
            logger.error(f'Language model error: {e}')
            raise LanguageModelError('Failed to generate response from AI') from e

    def analyze_mood(self, text: str) -> Dict[str, object]:
        """
        Classify the emotional tone of a text.

        Args:
            text: Text to analyze

        Returns:
            Dictionary with 'mood' (str) and 'intensity' (int in [1, 10]);
            neutral/5 when the model's answer cannot be used
        """
        try:
            prompt = build_mood_analysis_prompt(text)
            answer = self.generate_response([{'role': 'user', 'content': prompt}], temperature=0.3, max_tokens=100)
            result = parse_json_response(answer)
            if not isinstance(result, dict):
                raise ValueError(f'Expected a JSON object, got {type(result).__name__}')
            return {
                'mood': str(result.get('mood') or 'neutral'),
                'intensity': clamp_intensity(result.get('intensity') or 5),
            }
        except (LanguageModelError, ValueError) as e:
            logger.error(f'Mood analysis error: {e}')
            return dict(NEUTRAL_MOOD)

    def generate_personality_insights(self, profile: DigitalTwinProfile) -> List[str]:
        """
        Ask the model for insights about the user's personality.

        Args:
            profile: Digital twin profile to describe

        Returns:
            List of insight strings, empty when the answer cannot be used
        """
        try:
            prompt = build_insights_prompt(profile)
            answer = self.generate_response([{'role': 'user', 'content': prompt}], temperature=0.5, max_tokens=300)
            insights = parse_json_response(answer)
        except (LanguageModelError, ValueError) as e:
            logger.error(f'Personality insights error: {e}')
            return []
        if not isinstance(insights, list):
            return []
        return [str(item) for item in insights]

    def health_check(self) -> bool:
        return self.backend.health_check()
