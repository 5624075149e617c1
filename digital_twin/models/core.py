"""
Core data models for chat sessions, mood tracking and the digital twin profile.

Serialization uses the camelCase field names shared by the backend tables and the
persisted store snapshot.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.timestamp_utils import from_iso, to_iso, utc_now

MIN_INTENSITY = 1
MAX_INTENSITY = 10
MAX_TRAITS = 5
MAX_INTERESTS = 5
MAX_GOALS = 3
MAX_CONVERSATION_MEMORY = 50

CHAT_ROLES = ('user', 'assistant')


def new_id() -> str:
    return uuid.uuid4().hex


def clamp_intensity(value: Any) -> int:
    """Clamp a mood intensity into the inclusive [1, 10] range.

    Non-numeric input falls back to the neutral midpoint of 5.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 5
    if number != number:  # NaN
        return 5
    return int(round(max(MIN_INTENSITY, min(MAX_INTENSITY, number))))


def keep_latest(items: List[Any], limit: int) -> List[Any]:
    """Return the most recent ``limit`` items, dropping the oldest."""
    items = list(items)
    if len(items) <= limit:
        return items
    return items[-limit:]


class LoadingState(str, Enum):
    """Loading lifecycle of asynchronous store actions."""
    IDLE = 'idle'
    LOADING = 'loading'
    SUCCESS = 'success'
    ERROR = 'error'


@dataclass(frozen=True)
class ChatMessage:
    """A single message of a chat session. Never mutated after creation."""
    role: str
    content: str
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.role not in CHAT_ROLES:
            raise ValueError(f'Unsupported chat role: {self.role}')

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'role': self.role, 'content': self.content, 'timestamp': to_iso(self.timestamp)}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'ChatMessage':
        return cls(role=payload['role'],
                   content=payload.get('content', ''),
                   id=str(payload.get('id') or new_id()),
                   timestamp=from_iso(payload.get('timestamp'), utc_now()))


@dataclass
class ChatSession:
    """An ordered, titled conversation thread."""
    user_id: str
    title: str
    id: str = field(default_factory=new_id)
    messages: List[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def append_message(self, message: ChatMessage) -> None:
        self.messages.append(message)
        self.updated_at = max(utc_now(), self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'userId': self.user_id,
            'title': self.title,
            'messages': [message.to_dict() for message in self.messages],
            'createdAt': to_iso(self.created_at),
            'updatedAt': to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'ChatSession':
        created_at = from_iso(payload.get('createdAt'), utc_now())
        updated_at = from_iso(payload.get('updatedAt'), created_at)
        return cls(user_id=str(payload.get('userId', '')),
                   title=payload.get('title', ''),
                   id=str(payload.get('id') or new_id()),
                   messages=[ChatMessage.from_dict(m) for m in payload.get('messages') or []],
                   created_at=created_at,
                   updated_at=max(updated_at, created_at))


@dataclass
class MoodEntry:
    """One timestamped self-reported emotional data point."""
    mood: str
    intensity: int
    context: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.intensity = clamp_intensity(self.intensity)

    @classmethod
    def create(cls, mood: str, intensity: Any, context: Optional[str] = None) -> 'MoodEntry':
        return cls(mood=mood, intensity=intensity, context=context or None)

    def to_dict(self) -> Dict[str, Any]:
        payload = {'timestamp': to_iso(self.timestamp), 'mood': self.mood, 'intensity': self.intensity}
        if self.context:
            payload['context'] = self.context
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'MoodEntry':
        return cls(mood=payload.get('mood', 'neutral'),
                   intensity=clamp_intensity(payload.get('intensity', 5)),
                   context=payload.get('context') or None,
                   timestamp=from_iso(payload.get('timestamp'), utc_now()))


@dataclass(frozen=True)
class MoodTrend:
    """Coarse classification of recent versus prior mood intensity."""
    average: float
    trend: str

    def to_dict(self) -> Dict[str, Any]:
        return {'average': self.average, 'trend': self.trend}


@dataclass
class PersonalityTraits:
    traits: List[str] = field(default_factory=list)
    communication_style: str = 'friendly'
    interests: List[str] = field(default_factory=list)
    goals: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.traits = keep_latest(self.traits, MAX_TRAITS)
        self.interests = keep_latest(self.interests, MAX_INTERESTS)
        self.goals = keep_latest(self.goals, MAX_GOALS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'traits': list(self.traits),
            'communicationStyle': self.communication_style,
            'interests': list(self.interests),
            'goals': list(self.goals),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'PersonalityTraits':
        return cls(traits=list(payload.get('traits') or []),
                   communication_style=payload.get('communicationStyle', 'friendly'),
                   interests=list(payload.get('interests') or []),
                   goals=list(payload.get('goals') or []))


@dataclass
class ProfileMemory:
    conversations: List[str] = field(default_factory=list)
    preferences: Dict[str, Any] = field(default_factory=dict)
    mood_history: List[MoodEntry] = field(default_factory=list)

    def __post_init__(self):
        self.conversations = keep_latest(self.conversations, MAX_CONVERSATION_MEMORY)

    def remember(self, snippet: str) -> None:
        """Append a conversation snippet, keeping only the most recent entries."""
        self.conversations = keep_latest(self.conversations + [snippet], MAX_CONVERSATION_MEMORY)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'conversations': list(self.conversations),
            'preferences': dict(self.preferences),
            'moodHistory': [entry.to_dict() for entry in self.mood_history],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'ProfileMemory':
        return cls(conversations=list(payload.get('conversations') or []),
                   preferences=dict(payload.get('preferences') or {}),
                   mood_history=[MoodEntry.from_dict(m) for m in payload.get('moodHistory') or []])


@dataclass
class ProfileSettings:
    response_length: str = 'medium'
    formality: str = 'casual'
    topics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'responseLength': self.response_length, 'formality': self.formality, 'topics': list(self.topics)}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'ProfileSettings':
        return cls(response_length=payload.get('responseLength', 'medium'),
                   formality=payload.get('formality', 'casual'),
                   topics=list(payload.get('topics') or []))


@dataclass
class DigitalTwinProfile:
    """The user's configured companion personality, settings and memory bundle."""
    user_id: str
    id: str = field(default_factory=new_id)
    personality: PersonalityTraits = field(default_factory=PersonalityTraits)
    memory: ProfileMemory = field(default_factory=ProfileMemory)
    settings: ProfileSettings = field(default_factory=ProfileSettings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'userId': self.user_id,
            'personality': self.personality.to_dict(),
            'memory': self.memory.to_dict(),
            'settings': self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'DigitalTwinProfile':
        return cls(user_id=str(payload.get('userId', '')),
                   id=str(payload.get('id') or new_id()),
                   personality=PersonalityTraits.from_dict(payload.get('personality') or {}),
                   memory=ProfileMemory.from_dict(payload.get('memory') or {}),
                   settings=ProfileSettings.from_dict(payload.get('settings') or {}))


def default_profile(user_id: str) -> DigitalTwinProfile:
    """Build the fixed default personality/settings bundle for a new user."""
    return DigitalTwinProfile(user_id=user_id,
                              personality=PersonalityTraits(
                                  traits=['curious', 'empathetic', 'analytical'],
                                  communication_style='friendly',
                                  interests=['technology', 'personal growth', 'creativity'],
                                  goals=['help users achieve their goals', 'provide meaningful insights']),
                              memory=ProfileMemory(),
                              settings=ProfileSettings(response_length='medium',
                                                       formality='casual',
                                                       topics=['general', 'personal', 'professional']))
