"""
Authentication session service: login, registration, logout and session refresh.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..models.auth import AuthSession, AuthUser
from ..utils.api_client import ApiClient, ApiError, ClientError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import from_iso, utc_now
from ..utils.token_store import TokenStore

logger = get_logger(__name__)

SESSION_LIFETIME = timedelta(hours=24)
VALIDATION_ERROR = 'VALIDATION_ERROR'
LOGIN_PATH = '/auth/login'
REGISTER_PATH = '/auth/register'


def _default_expiry() -> datetime:
    return utc_now() + SESSION_LIFETIME


def session_from_response(body: Any) -> AuthSession:
    """
    Build an AuthSession from an auth endpoint response.

    Args:
        body: Decoded response ``{"success": true, "data": {...}}``

    Returns:
        AuthSession (expiry defaults to 24 hours from now)

    Raises:
        ClientError: If the response does not describe a successful login
    """
    data = body.get('data') if isinstance(body, dict) else None
    if not (isinstance(body, dict) and body.get('success') and isinstance(data, dict)):
        message = body.get('message') if isinstance(body, dict) else None
        raise ClientError('AUTH_FAILED', message or 'Authentication failed', body)
    try:
        return AuthSession(user=AuthUser.from_dict(data['user']),
                           access_token=data.get('accessToken', ''),
                           refresh_token=data.get('refreshToken', ''),
                           expires_at=from_iso(data.get('expiresAt'), _default_expiry()))
    except (KeyError, TypeError, ValueError) as e:
        raise ClientError('AUTH_FAILED', f'Malformed authentication response: {e}', body)


class AuthService:
    """Holds the authenticated user and session and keeps the token store in step."""

    def __init__(self, api_client: ApiClient, token_store: TokenStore):
        self.api_client = api_client
        self.token_store = token_store

        self.user: Optional[AuthUser] = None
        self.session: Optional[AuthSession] = None
        self.is_loading = False
        self.error: Optional[ApiError] = None

        # A failed request-time refresh already cleared the tokens
        self.api_client.on_logout = self._reset_state

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    def _reset_state(self) -> None:
        if self.session is not None:
            logger.info('Session ended by the request pipeline')
        self.user = None
        self.session = None
        self.is_loading = False
        self.error = None

    def _authenticate(self, path: str, payload: Dict[str, Any]) -> Optional[AuthSession]:
        self.is_loading = True
        self.error = None
        try:
            session = session_from_response(self.api_client.post(path, payload))
        except ApiError as e:
            logger.error(f'Authentication request to {path} failed: {e.code} {e.message}')
            self.error = e
            self.is_loading = False
            return None

        self.token_store.clear()
        self.token_store.save_tokens(session.access_token, session.refresh_token)
        self.set_session(session)
        self.is_loading = False
        logger.info(f'Authenticated user {session.user.id}')
        return session

    def login(self, email: str, password: str) -> Optional[AuthSession]:
        """
        Log in with email and password.

        Failures are stored in ``error``; the call then returns None.

        Args:
            email: Account email
            password: Account password

        Returns:
            The new session, or None on failure
        """
        return self._authenticate(LOGIN_PATH, {'email': email, 'password': password})

    def register(self,
                 email: str,
                 password: str,
                 name: Optional[str] = None,
                 confirm_password: Optional[str] = None) -> Optional[AuthSession]:
        """
        Register a new account and log it in.

        Args:
            email: Account email
            password: Account password
            name: Display name
            confirm_password: Must equal password when given

        Returns:
            The new session, or None on failure
        """
        if confirm_password is not None and confirm_password != password:
            self.error = ClientError(VALIDATION_ERROR, 'Passwords do not match')
            return None

        payload = {'email': email, 'password': password}
        if name:
            payload['name'] = name
        return self._authenticate(REGISTER_PATH, payload)

    def logout(self) -> None:
        self.token_store.clear()
        self._reset_state()
        logger.info('Logged out')

    def refresh_session(self) -> Optional[AuthSession]:
        """
        Exchange the session's refresh token for a new access token.

        The expiry never moves backwards. A failed refresh logs the user out.

        Returns:
            The refreshed session, or None when there is no session or refresh failed
        """
        if self.session is None:
            return None

        try:
            data = self.api_client.refresh_access_token(self.session.refresh_token)
        except ApiError as e:
            logger.warning(f'Session refresh failed ({e.code}); logging out')
            self.logout()
            return None

        expires_at = max(self.session.expires_at, from_iso(data.get('expiresAt'), _default_expiry()))
        self.session = AuthSession(user=self.session.user,
                                   access_token=data['accessToken'],
                                   refresh_token=data.get('refreshToken') or self.session.refresh_token,
                                   expires_at=expires_at)
        return self.session

    def clear_error(self) -> None:
        self.error = None

    def set_user(self, user: AuthUser) -> None:
        self.user = user

    def set_session(self, session: AuthSession) -> None:
        self.session = session
        self.user = session.user
