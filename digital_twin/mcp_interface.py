"""
MCP Interface Layer exposing the digital twin companion through fastmcp tools.
"""
import atexit
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from digital_twin.models.core import PersonalityTraits, ProfileSettings
from digital_twin.services.auth_service import AuthService
from digital_twin.services.chat_service import ChatService
from digital_twin.services.digital_twin_store import DigitalTwinStore
from digital_twin.services.language_model import LanguageModelService, create_chat_backend
from digital_twin.services.store_persistence import SnapshotPersister
from digital_twin.utils.api_client import ApiClient
from digital_twin.utils.backend_client import BackendClient
from digital_twin.utils.config import AppConfig, ConfigurationError, config, validate_config
from digital_twin.utils.health_check import get_health_status
from digital_twin.utils.logging_config import get_logger
from digital_twin.utils.token_store import BACKEND_TOKEN_NAMESPACE, EncryptedFileStore, TokenStore

logger = get_logger(__name__)


@dataclass
class Services:
    """Wired application services shared by the tools."""
    token_store: TokenStore
    api_client: ApiClient
    backend: Optional[BackendClient]
    store: DigitalTwinStore
    llm: LanguageModelService
    chat: ChatService
    auth: AuthService

    def health_components(self) -> Dict[str, Any]:
        return {'api': self.api_client, 'backend': self.backend, 'language_model': self.llm}


def build_services(app_config: AppConfig) -> Services:
    """Construct the service graph from configuration.

    Missing required settings are logged; the offline language model and a
    local-only store are used in their place.

    Args:
        app_config: Application configuration

    Returns:
        Services instance
    """
    try:
        validate_config(app_config)
    except ConfigurationError as e:
        logger.warning(f'Incomplete configuration, running with reduced features: {e}')

    storage = EncryptedFileStore(app_config.storage.secure_store_path, app_config.storage.key_path)
    token_store = TokenStore(storage)
    api_client = ApiClient.from_config(app_config.api, token_store)

    backend = None
    if app_config.backend.url and app_config.backend.anon_key:
        backend = BackendClient(app_config.backend, TokenStore(storage, namespace=BACKEND_TOKEN_NAMESPACE))

    store = DigitalTwinStore(persister=SnapshotPersister(storage, background=True),
                             backend=backend,
                             user_id=app_config.default_user_id)
    llm = LanguageModelService(create_chat_backend(app_config, api_client),
                               model=app_config.openai.model,
                               temperature=app_config.openai.temperature,
                               max_tokens=app_config.openai.max_tokens)

    return Services(token_store=token_store,
                    api_client=api_client,
                    backend=backend,
                    store=store,
                    llm=llm,
                    chat=ChatService(store, llm),
                    auth=AuthService(api_client, token_store))


# Initialize FastMCP application
mcp = FastMCP('Digital Twin')
services = build_services(config)
atexit.register(services.store.close)


def _require_profile() -> None:
    if services.store.profile is None:
        services.store.initialize_profile(services.store.user_id)
    if services.store.profile is None:
        raise Exception(f'Profile unavailable: {services.store.error}')


def _profile_dict() -> Optional[Dict[str, Any]]:
    profile = services.store.profile
    return profile.to_dict() if profile else None


@mcp.tool()
def initialize_profile(user_id: str) -> Dict[str, Any]:
    """Load or create the digital twin profile for a user.

    Args:
        user_id: User ID

    Returns:
        Loading state, error message and the profile
    """
    if not user_id or not user_id.strip():
        raise ValueError('User ID is required')

    services.store.initialize_profile(user_id.strip())
    return {
        'loading_state': services.store.loading_state.value,
        'error': services.store.error,
        'profile': _profile_dict()
    }


@mcp.tool()
def send_chat_message(text: str) -> Dict[str, Any]:
    """Send a message to the digital twin and get its reply.

    Args:
        text: Message text

    Returns:
        Reply text, detected mood and an error notice when the model was unreachable
    """
    try:
        _require_profile()
        reply = services.chat.send_message(text)
    except ValueError as e:
        raise Exception(f'Send message failed: {e}')

    logger.debug(f'MCP chat reply in session {services.store.current_session.id}')
    return {
        'session_id': services.store.current_session.id,
        'reply': reply.assistant_message.content,
        'mood': reply.mood.to_dict() if reply.mood else None,
        'error': reply.error
    }


@mcp.tool()
def start_new_session(title: Optional[str] = None) -> Dict[str, Any]:
    """Start a new chat session, archiving the current one if it has messages."""
    session = services.store.create_new_session(title)
    return {'id': session.id, 'title': session.title, 'created_at': session.created_at.isoformat()}


@mcp.tool()
def list_sessions() -> List[Dict[str, Any]]:
    """List archived and current chat sessions, most recently updated first."""
    sessions = list(services.store.chat_history)
    if services.store.current_session is not None:
        sessions.append(services.store.current_session)
    sessions.sort(key=lambda s: s.updated_at, reverse=True)
    return [{
        'id': session.id,
        'title': session.title,
        'message_count': len(session.messages),
        'updated_at': session.updated_at.isoformat(),
        'current': session is services.store.current_session
    } for session in sessions]


@mcp.tool()
def log_mood(mood: str, intensity: int, context: Optional[str] = None) -> Dict[str, Any]:
    """Record a mood entry.

    Args:
        mood: Mood label such as "happy" or "anxious"
        intensity: Intensity from 1 to 10 (clamped)
        context: Optional note

    Returns:
        The recorded entry
    """
    if not mood or not mood.strip():
        raise ValueError('Mood is required')
    return services.store.update_mood(mood.strip(), intensity, context).to_dict()


@mcp.tool()
def get_mood_trend() -> Dict[str, Any]:
    """Get the recent mood average and whether it is going up, down or stable."""
    return services.store.get_mood_trend().to_dict()


@mcp.tool()
def get_personality_insights(use_language_model: bool = False) -> List[str]:
    """Get insights about the user's personality and behavior.

    Args:
        use_language_model: Ask the language model instead of the built-in rules

    Returns:
        List of insight strings
    """
    if not use_language_model:
        return services.store.get_personality_insights()
    _require_profile()
    return services.llm.generate_personality_insights(services.store.profile)


@mcp.tool()
def update_personality(traits: Optional[List[str]] = None,
                       communication_style: Optional[str] = None,
                       interests: Optional[List[str]] = None,
                       goals: Optional[List[str]] = None) -> Dict[str, Any]:
    """Update the digital twin's personality. Omitted fields keep their value."""
    _require_profile()
    current = services.store.profile.personality
    personality = PersonalityTraits(
        traits=current.traits if traits is None else traits,
        communication_style=communication_style or current.communication_style,
        interests=current.interests if interests is None else interests,
        goals=current.goals if goals is None else goals)
    services.store.clear_error()
    services.store.update_profile({'personality': personality})
    if services.store.error:
        raise Exception(f'Update personality failed: {services.store.error}')
    return _profile_dict()


@mcp.tool()
def update_settings(response_length: Optional[str] = None,
                    formality: Optional[str] = None,
                    topics: Optional[List[str]] = None) -> Dict[str, Any]:
    """Update the digital twin's response settings. Omitted fields keep their value."""
    _require_profile()
    current = services.store.profile.settings
    settings = ProfileSettings(response_length=response_length or current.response_length,
                               formality=formality or current.formality,
                               topics=current.topics if topics is None else topics)
    services.store.clear_error()
    services.store.update_profile({'settings': settings})
    if services.store.error:
        raise Exception(f'Update settings failed: {services.store.error}')
    return _profile_dict()


@mcp.tool()
def get_profile() -> Optional[Dict[str, Any]]:
    """Get the current digital twin profile, or None when none is loaded."""
    return _profile_dict()


@mcp.tool()
def reset_profile() -> bool:
    """Erase the profile, chat sessions and mood history."""
    services.store.reset_profile()
    services.store.flush()
    return True


@mcp.tool()
def login(email: str, password: str) -> Dict[str, Any]:
    """Log in and store the session tokens securely.

    Returns:
        Authentication state and user, or the error
    """
    session = services.auth.login(email, password)
    if session is None:
        return {'authenticated': False, 'error': services.auth.error.to_dict() if services.auth.error else None}
    return {'authenticated': True, 'user': session.user.to_dict(), 'expires_at': session.expires_at.isoformat()}


@mcp.tool()
def logout() -> bool:
    """Log out and remove the stored tokens."""
    services.auth.logout()
    return True


@mcp.tool()
def health_status() -> Dict[str, Any]:
    """Get the health of the API, backend and language model."""
    return get_health_status(services.health_components())


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
