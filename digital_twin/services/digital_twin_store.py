"""
State store holding the digital twin profile, chat sessions and mood history.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.core import (ChatMessage, ChatSession, DigitalTwinProfile, LoadingState, MoodEntry, MoodTrend,
                           default_profile)
from ..utils.backend_client import BackendClient
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .store_persistence import SnapshotPersister

logger = get_logger(__name__)

TREND_WINDOW = 7
TREND_THRESHOLD = 0.5
DEFAULT_TREND = MoodTrend(average=5, trend='stable')
ACTIVE_COMMUNICATOR_MESSAGES = 50
MOOD_INSIGHT_MIN_ENTRIES = 10


def _average(entries: List[MoodEntry]) -> float:
    return sum(entry.intensity for entry in entries) / len(entries)


def compute_mood_trend(mood_history: List[MoodEntry]) -> MoodTrend:
    """Compare the average of the last 7 entries against the 7 before them.

    Args:
        mood_history: Mood entries, oldest first

    Returns:
        MoodTrend with the recent average and 'up', 'down' or 'stable'
    """
    if len(mood_history) < 2:
        return DEFAULT_TREND

    recent = mood_history[-TREND_WINDOW:]
    average = _average(recent)

    older = mood_history[-2 * TREND_WINDOW:-TREND_WINDOW]
    older_average = _average(older) if older else average

    trend = 'stable'
    if average > older_average + TREND_THRESHOLD:
        trend = 'up'
    elif average < older_average - TREND_THRESHOLD:
        trend = 'down'
    return MoodTrend(average=average, trend=trend)


class DigitalTwinStore:
    """Single authoritative in-memory record of the user's profile, sessions and moods.

    Every mutation updates memory first and then hands a snapshot of the
    persisted fields (profile, chat history, mood history) to the persister.
    Profile actions record failures in ``error``/``loading_state`` instead of
    raising.
    """

    def __init__(self,
                 persister: Optional[SnapshotPersister] = None,
                 backend: Optional[BackendClient] = None,
                 user_id: str = 'local-user',
                 append_after_session_create: bool = False):
        """
        Initialize the store and hydrate it from a persisted snapshot.

        Args:
            persister: Snapshot persister (state is memory-only if None)
            backend: Backend client used to load and save the profile
            user_id: Owner of sessions created before a profile exists
            append_after_session_create: Append the message that triggered session
                creation in add_chat_message instead of dropping it
        """
        self.persister = persister
        self.backend = backend
        self.user_id = user_id
        self.append_after_session_create = append_after_session_create

        self.profile: Optional[DigitalTwinProfile] = None
        self.current_session: Optional[ChatSession] = None
        self.chat_history: List[ChatSession] = []
        self.mood_history: List[MoodEntry] = []
        self.is_loading = False
        self.error: Optional[str] = None
        self.loading_state = LoadingState.IDLE

        self._hydrate()

    def _hydrate(self) -> None:
        if self.persister is None:
            return
        state = self.persister.load()
        if not state:
            return
        try:
            profile = state.get('profile')
            self.profile = DigitalTwinProfile.from_dict(profile) if profile else None
            self.chat_history = [ChatSession.from_dict(s) for s in state.get('chatHistory') or []]
            self.mood_history = [MoodEntry.from_dict(m) for m in state.get('moodHistory') or []]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f'Discarding malformed store snapshot: {e}')
            self.profile, self.chat_history, self.mood_history = None, [], []
            return
        if self.profile is not None:
            self.user_id = self.profile.user_id
        logger.debug(f'Hydrated store with {len(self.chat_history)} sessions and {len(self.mood_history)} mood entries')

    def snapshot(self) -> Dict[str, Any]:
        return {
            'profile': self.profile.to_dict() if self.profile else None,
            'chatHistory': [session.to_dict() for session in self.chat_history],
            'moodHistory': [entry.to_dict() for entry in self.mood_history],
        }

    def _persist(self) -> None:
        if self.persister is not None:
            self.persister.save(self.snapshot())

    def flush(self) -> None:
        if self.persister is not None:
            self.persister.flush()

    def close(self) -> None:
        """Wait for pending snapshot writes and stop the persister."""
        if self.persister is not None:
            self.persister.flush()
            self.persister.close()

    # Profile

    def initialize_profile(self, user_id: str) -> None:
        """
        Load or create the profile for a user.

        Sets loading_state to 'loading', then 'success' or 'error'. Never raises.

        Args:
            user_id: Profile owner
        """
        self.loading_state = LoadingState.LOADING
        self.user_id = user_id

        if self.profile is not None and self.profile.user_id == user_id:
            self.loading_state = LoadingState.SUCCESS
            return

        try:
            profile = None
            if self.backend is not None:
                profile = self.backend.get_digital_twin_by_user_id(user_id)
                if profile is None:
                    profile = self.backend.create_digital_twin(default_profile(user_id))
            self.profile = profile or default_profile(user_id)
            self.loading_state = LoadingState.SUCCESS
            logger.info(f'Initialized digital twin profile for user {user_id}')
        except Exception as e:
            logger.error(f'Failed to initialize profile: {e}')
            self.error = str(e) or 'Failed to initialize profile'
            self.loading_state = LoadingState.ERROR
        self._persist()

    def update_profile(self, updates: Dict[str, Any]) -> None:
        """
        Shallow-merge top-level profile fields.

        Values may be dataclasses or their dict form, keyed like
        DigitalTwinProfile.to_dict() ('personality', 'memory', 'settings').
        No-op without a profile. Never raises.

        Args:
            updates: Partial profile
        """
        if self.profile is None:
            return

        self.is_loading = True
        try:
            changes = {key: value.to_dict() if hasattr(value, 'to_dict') else value for key, value in updates.items()}
            merged = self.profile.to_dict()
            merged.update(changes)
            updated = DigitalTwinProfile.from_dict(merged)
            if self.backend is not None:
                self.backend.update_digital_twin(self.profile.id, changes)
            self.profile = updated
        except Exception as e:
            logger.error(f'Failed to update profile: {e}')
            self.error = str(e) or 'Failed to update profile'
            self.loading_state = LoadingState.ERROR
        finally:
            self.is_loading = False
        self._persist()

    # Chat

    def add_chat_message(self, message: ChatMessage) -> None:
        """
        Append a message to the active session and the conversation memory.

        Without an active session a new one is created; the triggering message is
        then dropped unless append_after_session_create is set.

        Args:
            message: Message to append
        """
        if self.current_session is None:
            self.create_new_session()
            if not self.append_after_session_create:
                return

        self.current_session.append_message(message)
        if self.profile is not None:
            self.profile.memory.remember(f'{message.role}: {message.content}')
        self._persist()

    def create_new_session(self, title: Optional[str] = None) -> ChatSession:
        """
        Install a fresh session, archiving the current one if it has messages.

        Args:
            title: Session title (defaults to 'Chat YYYY-MM-DD')

        Returns:
            The new current session
        """
        now: datetime = utc_now()
        owner = self.profile.user_id if self.profile is not None else self.user_id
        session = ChatSession(user_id=owner, title=title or f'Chat {now:%Y-%m-%d}', created_at=now, updated_at=now)

        if self.current_session is not None and self.current_session.messages:
            self.chat_history.append(self.current_session)
        self.current_session = session
        self._persist()
        return session

    # Mood

    def update_mood(self, mood: str, intensity: Any, context: Optional[str] = None) -> MoodEntry:
        """
        Record a mood entry with intensity clamped to [1, 10].

        Args:
            mood: Mood label
            intensity: Self-reported intensity
            context: Optional free text

        Returns:
            The recorded entry
        """
        entry = MoodEntry.create(mood, intensity, context)
        self.mood_history.append(entry)
        if self.profile is not None:
            self.profile.memory.mood_history.append(entry)
        self._persist()
        return entry

    def get_mood_trend(self) -> MoodTrend:
        return compute_mood_trend(self.mood_history)

    def get_personality_insights(self) -> List[str]:
        """Derive human-readable insights from archived sessions, moods and interests."""
        insights: List[str] = []
        if self.profile is None:
            return insights

        total_messages = sum(len(session.messages) for session in self.chat_history)
        if total_messages > ACTIVE_COMMUNICATOR_MESSAGES:
            insights.append('Active communicator with consistent engagement')

        if len(self.mood_history) > MOOD_INSIGHT_MIN_ENTRIES:
            trend = self.get_mood_trend().trend
            if trend == 'up':
                insights.append('Showing positive mood progression')
            elif trend == 'down':
                insights.append('May need support or encouragement')

        if self.profile.personality.interests:
            insights.append(f'Interested in: {", ".join(self.profile.personality.interests)}')

        return insights

    # Lifecycle

    def clear_error(self) -> None:
        self.error = None

    def reset_profile(self) -> None:
        """Clear profile, sessions and mood history and return to idle."""
        self.profile = None
        self.current_session = None
        self.chat_history = []
        self.mood_history = []
        self.is_loading = False
        self.error = None
        self.loading_state = LoadingState.IDLE
        self._persist()
