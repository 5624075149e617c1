"""
Common interface of the chat completion backends.
"""

from abc import ABC, abstractmethod
from typing import Dict, List


class LanguageModelError(Exception):
    """Raised when a chat completion cannot be produced."""
    pass


class ChatBackend(ABC):
    """A chat completion provider selected once at construction time."""

    name = 'base'

    @abstractmethod
    def complete(self, messages: List[Dict[str, str]], model: str, temperature: float, max_tokens: int) -> str:
        """
        Produce the assistant reply for a conversation.

        Args:
            messages: Messages with 'role' ('system', 'user' or 'assistant') and 'content'
            model: Model identifier (backends may ignore it)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            Reply text

        Raises:
            LanguageModelError: If the backend fails
        """

    def health_check(self) -> bool:
        return True
