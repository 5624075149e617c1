"""
Authenticated HTTP client with token refresh and retry logic.
"""

import time
from typing import Any, Callable, Dict, Optional

import requests

from .config import ApiConfig
from .logging_config import get_logger
from .token_store import TokenStore

logger = get_logger(__name__)

NETWORK_ERROR = 'NETWORK_ERROR'
UNKNOWN_ERROR = 'UNKNOWN_ERROR'


class ApiError(Exception):
    """Normalized error surfaced to callers as a ``{code, message, details}`` triple."""

    retryable = False

    def __init__(self, code: str, message: str, details: Any = None, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code, 'message': self.message, 'details': self.details}

    def __repr__(self) -> str:
        return f'{type(self).__name__}(code={self.code!r}, message={self.message!r})'


class NetworkError(ApiError):
    """No response was received."""
    retryable = True


class ServerError(ApiError):
    """HTTP 5xx response."""
    retryable = True


class RateLimitError(ApiError):
    """HTTP 429 response."""
    retryable = True


class ClientError(ApiError):
    """HTTP 4xx response other than 401 and 429."""
    pass


class AuthExpiredError(ApiError):
    """HTTP 401 response."""
    pass


class UnknownError(ApiError):
    """Any failure that is neither a transport error nor an HTTP error response."""
    pass


def decode_body(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def error_from_response(response: requests.Response) -> ApiError:
    """Build the ApiError matching an HTTP error response."""
    status = response.status_code
    body = decode_body(response)
    message = 'An error occurred'
    if isinstance(body, dict) and body.get('message'):
        message = str(body['message'])

    if status == 401:
        error_class = AuthExpiredError
    elif status == 429:
        error_class = RateLimitError
    elif status >= 500:
        error_class = ServerError
    elif status >= 400:
        error_class = ClientError
    else:
        error_class = UnknownError
    return error_class(str(status), message, body, status=status)


def error_from_exception(exc: Exception) -> ApiError:
    """Build the ApiError matching an exception raised while sending a request."""
    if isinstance(exc, ApiError):
        return exc
    if isinstance(exc, requests.RequestException):
        return NetworkError(NETWORK_ERROR, 'Network error. Please check your connection.', str(exc))
    return UnknownError(UNKNOWN_ERROR, str(exc) or 'An unknown error occurred', repr(exc))


class ApiClient:
    """HTTP client that injects bearer tokens, refreshes expired auth once and retries transient failures."""

    def __init__(self,
                 base_url: str,
                 token_store: TokenStore,
                 timeout: float = 30.0,
                 max_retries: int = 3,
                 backoff_base: float = 2.0,
                 refresh_path: str = '/auth/refresh',
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 on_logout: Optional[Callable[[], None]] = None):
        """
        Initialize the API client.

        Args:
            base_url: Base URL that relative request paths are joined onto
            token_store: Storage for the access/refresh token pair
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt for retryable failures
            backoff_base: Delay before retry n is backoff_base ** n seconds
            refresh_path: Path of the token refresh endpoint
            session: requests.Session to use (a new one if None)
            sleep: Sleep function used for backoff
            on_logout: Called after a failed refresh cleared the tokens
        """
        self.base_url = base_url.rstrip('/')
        self.token_store = token_store
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.refresh_path = refresh_path
        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})
        self._sleep = sleep
        self.on_logout = on_logout

        logger.info(f'Initialized API client for base URL: {self.base_url}')

    @classmethod
    def from_config(cls, config: ApiConfig, token_store: TokenStore, **kwargs) -> 'ApiClient':
        return cls(config.base_url,
                   token_store,
                   timeout=config.timeout,
                   max_retries=config.max_retries,
                   backoff_base=config.backoff_base,
                   refresh_path=config.refresh_path,
                   **kwargs)

    def build_url(self, url: str) -> str:
        if url.startswith('http://') or url.startswith('https://'):
            return url
        return f'{self.base_url}/{url.lstrip("/")}'

    def _auth_header(self) -> Optional[str]:
        token = self.token_store.get_access_token()
        return f'Bearer {token}' if token else None

    def _send(self, method: str, url: str, data: Any, params: Optional[Dict[str, Any]],
              headers: Optional[Dict[str, str]]) -> requests.Response:
        request_headers = dict(headers or {})
        if 'Authorization' not in request_headers:
            auth = self._auth_header()
            if auth:
                request_headers['Authorization'] = auth
        return self.session.request(method,
                                    self.build_url(url),
                                    json=data,
                                    params=params,
                                    headers=request_headers,
                                    timeout=self.timeout)

    def request(self,
                method: str,
                url: str,
                data: Any = None,
                params: Optional[Dict[str, Any]] = None,
                headers: Optional[Dict[str, str]] = None) -> Any:
        """
        Perform an HTTP request with bounded automatic recovery.

        A 401 on a request without a caller-supplied Authorization header triggers
        one token refresh followed by exactly one replay. Network errors, 5xx and 429 are
        retried up to max_retries times with exponential backoff. Retry state is
        local to this call.

        Args:
            method: HTTP method
            url: Path relative to base_url, or an absolute URL
            data: JSON-serializable request body
            params: Query string parameters
            headers: Header overrides; a caller-supplied Authorization header wins

        Returns:
            Decoded response body

        Raises:
            ApiError: Normalized error once recovery is exhausted or not applicable
        """
        method = method.upper()
        uses_stored_token = 'Authorization' not in (headers or {})
        attempt = 0
        replayed = False

        while True:
            try:
                response = self._send(method, url, data, params, headers)
            except Exception as e:
                error = error_from_exception(e)
            else:
                if response.ok:
                    return decode_body(response)
                error = error_from_response(response)

                if isinstance(error, AuthExpiredError) and uses_stored_token and not replayed:
                    replayed = True
                    self._recover_expired_auth(error)
                    logger.debug(f'Replaying {method} {url} with refreshed access token')
                    continue

            if error.retryable and attempt < self.max_retries:
                attempt += 1
                delay = self.backoff_base**attempt
                logger.warning(f'{method} {url} failed with {error.code}; retry {attempt}/{self.max_retries} '
                               f'in {delay:.0f}s')
                self._sleep(delay)
                continue

            raise error

    def _recover_expired_auth(self, original: AuthExpiredError) -> None:
        """Refresh the access token or log out and re-raise the original 401."""
        refresh_token = self.token_store.get_refresh_token()
        try:
            if not refresh_token:
                raise ClientError('401', 'No refresh token available')
            self.refresh_access_token(refresh_token)
        except ApiError as e:
            logger.warning(f'Token refresh failed ({e.code}); logging out')
            self.logout()
            raise original

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new access token and persist it.

        The call bypasses bearer injection and retries.

        Args:
            refresh_token: Stored refresh token

        Returns:
            The refresh payload containing at least ``accessToken``

        Raises:
            ApiError: If the refresh endpoint fails or reports no success
        """
        try:
            response = self.session.post(self.build_url(self.refresh_path),
                                         json={'refreshToken': refresh_token},
                                         timeout=self.timeout)
        except Exception as e:
            raise error_from_exception(e)

        if not response.ok:
            raise error_from_response(response)

        body = decode_body(response)
        data = body.get('data') if isinstance(body, dict) else None
        if not (isinstance(body, dict) and body.get('success') and isinstance(data, dict) and data.get('accessToken')):
            raise ClientError(str(response.status_code), 'Token refresh was not successful', body,
                              status=response.status_code)

        self.token_store.save_tokens(data['accessToken'], data.get('refreshToken'))
        logger.info('Access token refreshed')
        return data

    def logout(self) -> None:
        """Clear both stored tokens and notify the logout listener."""
        self.token_store.clear()
        if self.on_logout is not None:
            self.on_logout()

    def get(self, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Any:
        return self.request('GET', url, params=params, headers=headers)

    def post(self, url: str, data: Any = None, params: Optional[Dict[str, Any]] = None,
             headers: Optional[Dict[str, str]] = None) -> Any:
        return self.request('POST', url, data=data, params=params, headers=headers)

    def put(self, url: str, data: Any = None, params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None) -> Any:
        return self.request('PUT', url, data=data, params=params, headers=headers)

    def patch(self, url: str, data: Any = None, params: Optional[Dict[str, Any]] = None,
              headers: Optional[Dict[str, str]] = None) -> Any:
        return self.request('PATCH', url, data=data, params=params, headers=headers)

    def delete(self, url: str, params: Optional[Dict[str, Any]] = None,
               headers: Optional[Dict[str, str]] = None) -> Any:
        return self.request('DELETE', url, params=params, headers=headers)

    def health_check(self) -> bool:
        """
        Perform a health check on the API.

        Returns:
            True if the health endpoint answers with a 2xx status, False otherwise
        """
        try:
            response = self.session.get(self.build_url('/health'), timeout=self.timeout)
            return response.ok
        except requests.RequestException as e:
            logger.error(f'API health check failed: {e}')
            return False
