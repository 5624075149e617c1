"""
Chat orchestration: record the user's message, track mood and generate the companion's reply.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from ..models.core import ChatMessage, MoodEntry
from ..utils.llm_base import LanguageModelError
from ..utils.logging_config import get_logger
from .digital_twin_store import DigitalTwinStore
from .language_model import LanguageModelService

logger = get_logger(__name__)

FALLBACK_REPLY = "I'm having trouble connecting right now. Please try again in a moment."
CONNECTION_NOTICE = 'Failed to get AI response. Please check your connection.'


@dataclass
class ChatReply:
    """Outcome of one send-message round trip."""
    user_message: ChatMessage
    assistant_message: ChatMessage
    mood: Optional[MoodEntry] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ChatService:
    """Drive a chat turn against the store and the language model service."""

    def __init__(self,
                 store: DigitalTwinStore,
                 llm: LanguageModelService,
                 history_window: int = 10,
                 temperature: float = 0.7,
                 max_tokens: int = 500,
                 track_mood: bool = True):
        self.store = store
        self.llm = llm
        self.history_window = history_window
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.track_mood = track_mood

    def _context_messages(self) -> List[Dict[str, str]]:
        session = self.store.current_session
        recent = session.messages[-self.history_window:] if session else []
        return [{'role': message.role, 'content': message.content} for message in recent]

    def send_message(self, text: str) -> ChatReply:
        """
        Send a user message and append the companion's reply to the active session.

        Language model failures do not raise: a fallback assistant message is
        appended and the reply carries an error notice.

        Args:
            text: User input

        Returns:
            ChatReply with both messages and the recorded mood entry

        Raises:
            ValueError: If the text is blank
        """
        content = (text or '').strip()
        if not content:
            raise ValueError('Message text must not be empty')

        if self.store.current_session is None:
            self.store.create_new_session()

        user_message = ChatMessage(role='user', content=content)
        self.store.add_chat_message(user_message)

        mood = None
        if self.track_mood:
            analysis = self.llm.analyze_mood(content)
            mood = self.store.update_mood(analysis['mood'], analysis['intensity'], content)

        error = None
        try:
            answer = self.llm.generate_response(self._context_messages(),
                                                profile=self.store.profile,
                                                temperature=self.temperature,
                                                max_tokens=self.max_tokens)
        except LanguageModelError as e:
            logger.error(f'Chat reply failed: {e}')
            answer = FALLBACK_REPLY
            error = CONNECTION_NOTICE

        assistant_message = ChatMessage(role='assistant', content=answer)
        self.store.add_chat_message(assistant_message)
        return ChatReply(user_message=user_message, assistant_message=assistant_message, mood=mood, error=error)
