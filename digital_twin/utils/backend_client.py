"""
Backend-as-a-service client: table CRUD over the REST API plus realtime message inserts.
"""

from collections import Counter
from typing import Any, Callable, Dict, List, Optional

import requests

from ..models.core import ChatMessage, ChatSession, DigitalTwinProfile
from .api_client import ApiClient, ClientError, decode_body, error_from_exception, error_from_response
from .config import BackendConfig
from .logging_config import get_logger
from .realtime import RealtimeSubscription, realtime_url
from .token_store import TokenStore

logger = get_logger(__name__)

USERS_TABLE = 'users'
DIGITAL_TWINS_TABLE = 'digital_twins'
CHAT_SESSIONS_TABLE = 'chat_sessions'
CHAT_MESSAGES_TABLE = 'chat_messages'

SINGLE_OBJECT = 'application/vnd.pgrst.object+json'
RETURN_REPRESENTATION = {'Prefer': 'return=representation', 'Accept': SINGLE_OBJECT}


class BackendApiClient(ApiClient):
    """ApiClient speaking the backend's REST dialect and token refresh format."""

    def __init__(self, config: BackendConfig, token_store: TokenStore, **kwargs):
        self.backend_url = config.url.rstrip('/')
        self.anon_key = config.anon_key
        super().__init__(f'{self.backend_url}/rest/v1', token_store, refresh_path='/auth/v1/token', **kwargs)
        self.session.headers.update({'apikey': self.anon_key})

    def _auth_header(self) -> Optional[str]:
        # Anonymous requests still need a bearer credential.
        return super()._auth_header() or f'Bearer {self.anon_key}'

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        try:
            response = self.session.post(f'{self.backend_url}{self.refresh_path}',
                                         params={'grant_type': 'refresh_token'},
                                         json={'refresh_token': refresh_token},
                                         timeout=self.timeout)
        except Exception as e:
            raise error_from_exception(e)

        if not response.ok:
            raise error_from_response(response)

        body = decode_body(response)
        if not isinstance(body, dict) or not body.get('access_token'):
            raise ClientError(str(response.status_code), 'Token refresh was not successful', body,
                              status=response.status_code)

        self.token_store.save_tokens(body['access_token'], body.get('refresh_token'))
        logger.info('Backend access token refreshed')
        return {'accessToken': body['access_token'], 'refreshToken': body.get('refresh_token')}

    def health_check(self) -> bool:
        try:
            response = self.session.get(f'{self.base_url}/', timeout=self.timeout)
            return response.status_code < 500
        except requests.RequestException as e:
            logger.error(f'Backend health check failed: {e}')
            return False


class BackendClient:
    """CRUD over users, digital_twins, chat_sessions and chat_messages plus realtime inserts."""

    def __init__(self, config: BackendConfig, token_store: TokenStore, api: Optional[BackendApiClient] = None,
                 subscription_factory: Callable[..., RealtimeSubscription] = RealtimeSubscription):
        """
        Initialize the backend client.

        Args:
            config: BackendConfig with the backend URL and anonymous key
            token_store: Token storage shared with the auth flow
            api: Preconfigured BackendApiClient (built from config if None)
            subscription_factory: Factory for realtime subscriptions
        """
        if not config.url or not config.anon_key:
            raise ValueError('Backend configuration missing')
        self.config = config
        self.token_store = token_store
        self.api = api or BackendApiClient(config, token_store)
        self._subscription_factory = subscription_factory
        self._subscriptions: List[RealtimeSubscription] = []

        logger.info(f'Initialized backend client for: {config.url}')

    def _insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        return self.api.post(f'/{table}', data=row, headers=RETURN_REPRESENTATION)

    def _select_single(self, table: str, column: str, value: str) -> Optional[Dict[str, Any]]:
        try:
            return self.api.get(f'/{table}', params={'select': '*', column: f'eq.{value}'},
                                headers={'Accept': SINGLE_OBJECT})
        except ClientError as e:
            # A single-object read of zero rows answers 406
            if e.status == 406:
                return None
            raise

    def _select_many(self, table: str, column: str, value: str, order: str) -> List[Dict[str, Any]]:
        rows = self.api.get(f'/{table}', params={'select': '*', column: f'eq.{value}', 'order': order})
        return rows or []

    def _update(self, table: str, row_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self.api.patch(f'/{table}', data=updates, params={'id': f'eq.{row_id}'}, headers=RETURN_REPRESENTATION)

    # Users

    def create_user(self, user_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert(USERS_TABLE, user_data)

    def get_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._select_single(USERS_TABLE, 'id', user_id)

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(USERS_TABLE, user_id, updates)

    # Digital twins

    def create_digital_twin(self, profile: DigitalTwinProfile) -> DigitalTwinProfile:
        row = profile.to_dict()
        row.pop('id', None)
        return DigitalTwinProfile.from_dict(self._insert(DIGITAL_TWINS_TABLE, row))

    def get_digital_twin_by_user_id(self, user_id: str) -> Optional[DigitalTwinProfile]:
        row = self._select_single(DIGITAL_TWINS_TABLE, 'userId', user_id)
        return DigitalTwinProfile.from_dict(row) if row else None

    def update_digital_twin(self, twin_id: str, updates: Dict[str, Any]) -> DigitalTwinProfile:
        updates = {key: value for key, value in updates.items() if key != 'id'}
        return DigitalTwinProfile.from_dict(self._update(DIGITAL_TWINS_TABLE, twin_id, updates))

    # Chat

    def create_chat_session(self, user_id: str, title: str) -> ChatSession:
        row = self._insert(CHAT_SESSIONS_TABLE, {'userId': user_id, 'title': title})
        return ChatSession.from_dict(row)

    def get_chat_sessions_by_user_id(self, user_id: str) -> List[ChatSession]:
        rows = self._select_many(CHAT_SESSIONS_TABLE, 'userId', user_id, 'updatedAt.desc')
        return [ChatSession.from_dict(row) for row in rows]

    def add_chat_message(self, session_id: str, role: str, content: str) -> ChatMessage:
        row = self._insert(CHAT_MESSAGES_TABLE, {'sessionId': session_id, 'role': role, 'content': content})
        return ChatMessage.from_dict(row)

    def get_chat_messages_by_session_id(self, session_id: str) -> List[ChatMessage]:
        rows = self._select_many(CHAT_MESSAGES_TABLE, 'sessionId', session_id, 'timestamp.asc')
        return [ChatMessage.from_dict(row) for row in rows]

    def subscribe_to_chat_messages(self, session_id: str,
                                   callback: Callable[[ChatMessage], None]) -> RealtimeSubscription:
        """
        Subscribe to messages inserted into a chat session.

        Args:
            session_id: Session whose inserts are delivered
            callback: Called with each inserted ChatMessage from a background thread

        Returns:
            Started subscription; call unsubscribe() to stop it
        """
        subscription = self._subscription_factory(url=realtime_url(self.config.url, self.config.anon_key),
                                                  channel=f'{CHAT_MESSAGES_TABLE}:{session_id}',
                                                  table=CHAT_MESSAGES_TABLE,
                                                  callback=callback,
                                                  row_filter=f'sessionId=eq.{session_id}',
                                                  access_token=self.token_store.get_access_token(),
                                                  record_factory=ChatMessage.from_dict)
        self._subscriptions.append(subscription)
        return subscription.start()

    # Analytics

    def get_user_analytics(self, user_id: str) -> Dict[str, Any]:
        """
        Summarize a user's activity.

        Args:
            user_id: User to analyze

        Returns:
            Dictionary with totalMessages, averageMood, mostActiveTime and favoriteTopics
        """
        messages: List[ChatMessage] = []
        for session in self.get_chat_sessions_by_user_id(user_id):
            messages.extend(self.get_chat_messages_by_session_id(session.id))

        twin = self.get_digital_twin_by_user_id(user_id)
        moods = twin.memory.mood_history if twin else []
        average_mood = sum(entry.intensity for entry in moods) / len(moods) if moods else 5

        buckets = Counter(_time_of_day(message.timestamp.hour) for message in messages)
        most_active = buckets.most_common(1)[0][0] if buckets else 'evening'

        return {
            'totalMessages': len(messages),
            'averageMood': average_mood,
            'mostActiveTime': most_active,
            'favoriteTopics': list(twin.settings.topics) if twin else [],
        }

    def health_check(self) -> bool:
        return self.api.health_check()

    def cleanup(self) -> None:
        """Stop every realtime subscription opened by this client."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()


def _time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return 'morning'
    if 12 <= hour < 17:
        return 'afternoon'
    if 17 <= hour < 22:
        return 'evening'
    return 'night'
