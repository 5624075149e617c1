"""
Deterministic keyword-based chat backend used when no language model is configured.
"""

import json
import re
from typing import Dict, List, Optional, Tuple

from .llm_base import ChatBackend
from .logging_config import get_logger
from .prompts import INSIGHTS_MARKER, MOOD_ANALYSIS_MARKER

logger = get_logger(__name__)

# (mood, intensity, keywords); first match wins
MOOD_LEXICON: List[Tuple[str, int, Tuple[str, ...]]] = [
    ('anxious', 7, ('anxious', 'anxiety', 'worried', 'nervous', 'panic', 'stressed', 'stress', 'overwhelmed')),
    ('sad', 7, ('sad', 'depressed', 'lonely', 'unhappy', 'crying', 'down', 'miserable')),
    ('angry', 7, ('angry', 'furious', 'annoyed', 'frustrated', 'mad', 'irritated')),
    ('tired', 5, ('tired', 'exhausted', 'sleepy', 'drained', 'burned out')),
    ('excited', 8, ('excited', 'thrilled', 'amazing', "can't wait", 'awesome')),
    ('happy', 7, ('happy', 'glad', 'great', 'good', 'joy', 'grateful', 'love')),
    ('calm', 4, ('calm', 'relaxed', 'peaceful', 'fine', 'okay')),
]

REPLY_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (('hello', 'hi', 'hey', 'good morning', 'good evening'),
     "Hi! It's good to hear from you. How are you feeling today?"),
    (('anxious', 'worried', 'stress', 'stressed', 'overwhelmed', 'panic'),
     "That sounds like a lot to carry. Let's slow down for a moment: what is weighing on you the most right now?"),
    (('sad', 'lonely', 'depressed', 'down'),
     "I'm sorry you're feeling this way. I'm here with you. Would you like to talk about what happened?"),
    (('angry', 'frustrated', 'annoyed'),
     'It makes sense to feel frustrated. What would help you feel a bit more in control of the situation?'),
    (('tired', 'exhausted', 'sleep'),
     'Rest matters. Have you been able to take any breaks for yourself lately?'),
    (('goal', 'plan', 'achieve', 'productive'),
     "Let's break that goal into one small step you could take today. What would that step be?"),
    (('happy', 'great', 'excited', 'good'),
     "That's wonderful to hear! What made today feel good?"),
    (('thank', 'thanks'),
     "You're welcome. I'm always here if you want to talk."),
]

DEFAULT_REPLY = "I'm listening. Tell me more about what's on your mind."

OFFLINE_INSIGHTS = [
    'Reflects regularly on personal experiences',
    'Values thoughtful, supportive conversations',
    'Shows curiosity about personal growth',
]


def _contains_keyword(text: str, keyword: str) -> bool:
    return re.search(rf'\b{re.escape(keyword)}\b', text) is not None


def detect_mood(text: str) -> Dict[str, object]:
    """Classify the mood of a text by keyword lookup.

    Args:
        text: Free text

    Returns:
        Dictionary with 'mood' and 'intensity'
    """
    lowered = text.lower()
    for mood, intensity, keywords in MOOD_LEXICON:
        if any(_contains_keyword(lowered, keyword) for keyword in keywords):
            if '!' in text:
                intensity = min(10, intensity + 1)
            return {'mood': mood, 'intensity': intensity}
    return {'mood': 'neutral', 'intensity': 5}


def keyword_reply(text: str) -> str:
    lowered = text.lower()
    for keywords, reply in REPLY_RULES:
        if any(_contains_keyword(lowered, keyword) for keyword in keywords):
            return reply
    return DEFAULT_REPLY


def _quoted_text(prompt: str) -> str:
    match = re.search(r'Text: "(.*)"', prompt, flags=re.DOTALL)
    return match.group(1) if match else prompt


class OfflineChatBackend(ChatBackend):
    """Offline stub that answers without any network access.

    Conversation turns get keyword-based replies; mood analysis and insight
    requests are answered with JSON so callers parse them like a real model's.
    """

    name = 'offline'

    def __init__(self):
        logger.info('Initialized offline chat backend')

    def complete(self, messages: List[Dict[str, str]], model: str, temperature: float, max_tokens: int) -> str:
        prompt = _last_user_content(messages) or ''

        if MOOD_ANALYSIS_MARKER in prompt:
            return json.dumps(detect_mood(_quoted_text(prompt)))
        if INSIGHTS_MARKER in prompt:
            return json.dumps(OFFLINE_INSIGHTS)
        return keyword_reply(prompt)


def _last_user_content(messages: List[Dict[str, str]]) -> Optional[str]:
    for message in reversed(messages):
        if message.get('role') == 'user' and message.get('content', '').strip():
            return message['content']
    return None
