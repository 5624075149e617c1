import pytest

from conftest import FakeResponse, FakeSession
from digital_twin.models.core import default_profile
from digital_twin.services.auth_service import AuthService
from digital_twin.utils.api_client import ApiClient, AuthExpiredError, ClientError
from digital_twin.utils.backend_client import SINGLE_OBJECT, BackendApiClient, BackendClient
from digital_twin.utils.config import BackendConfig
from digital_twin.utils.token_store import BACKEND_TOKEN_NAMESPACE, TokenStore

CONFIG = BackendConfig(url='https://project.example.co', anon_key='anon-key')


def make_backend(token_store, session, sleeps, **kwargs):
    api = BackendApiClient(CONFIG, token_store, session=session, sleep=sleeps.append)
    return BackendClient(CONFIG, token_store, api=api, **kwargs)


def twin_row(user_id='u-1', twin_id='t-1'):
    row = default_profile(user_id).to_dict()
    row['id'] = twin_id
    return row


def test_missing_configuration_is_rejected(token_store):
    with pytest.raises(ValueError):
        BackendClient(BackendConfig(url='', anon_key=''), token_store)


def test_anonymous_requests_use_api_key(token_store, sleeps):
    session = FakeSession([FakeResponse(200, twin_row())])
    backend = make_backend(token_store, session, sleeps)

    twin = backend.get_digital_twin_by_user_id('u-1')

    assert twin.id == 't-1'
    call = session.calls[0]
    assert call['url'] == 'https://project.example.co/rest/v1/digital_twins'
    assert call['params'] == {'select': '*', 'userId': 'eq.u-1'}
    assert call['headers']['Authorization'] == 'Bearer anon-key'
    assert call['headers']['Accept'] == SINGLE_OBJECT
    assert session.headers['apikey'] == 'anon-key'


def test_signed_in_requests_use_access_token(token_store, sleeps):
    token_store.save_tokens('user-token', 'refresh')
    session = FakeSession([FakeResponse(200, {'id': 'u-1', 'email': 'a@b.c'})])
    backend = make_backend(token_store, session, sleeps)

    assert backend.get_user_by_id('u-1')['email'] == 'a@b.c'
    assert session.calls[0]['headers']['Authorization'] == 'Bearer user-token'


def test_missing_single_row_returns_none(token_store, sleeps):
    session = FakeSession([FakeResponse(406, {'message': 'JSON object requested, multiple (or no) rows returned'})])
    backend = make_backend(token_store, session, sleeps)

    assert backend.get_digital_twin_by_user_id('nobody') is None


def test_other_client_errors_propagate(token_store, sleeps):
    session = FakeSession([FakeResponse(403, {'message': 'forbidden'})])
    backend = make_backend(token_store, session, sleeps)

    with pytest.raises(ClientError):
        backend.get_user_by_id('u-1')


def test_create_digital_twin_lets_server_assign_id(token_store, sleeps):
    session = FakeSession([FakeResponse(201, twin_row(twin_id='server-id'))])
    backend = make_backend(token_store, session, sleeps)

    created = backend.create_digital_twin(default_profile('u-1'))

    call = session.calls[0]
    assert call['method'] == 'POST'
    assert 'id' not in call['json']
    assert call['json']['userId'] == 'u-1'
    assert call['headers']['Prefer'] == 'return=representation'
    assert created.id == 'server-id'


def test_update_digital_twin_patches_by_id(token_store, sleeps):
    session = FakeSession([FakeResponse(200, twin_row())])
    backend = make_backend(token_store, session, sleeps)

    backend.update_digital_twin('t-1', {'id': 'ignored', 'settings': {'formality': 'formal'}})

    call = session.calls[0]
    assert call['method'] == 'PATCH'
    assert call['params'] == {'id': 'eq.t-1'}
    assert call['json'] == {'settings': {'formality': 'formal'}}


def test_chat_sessions_and_messages(token_store, sleeps):
    sessions = [{'id': 's-1', 'userId': 'u-1', 'title': 'Chat', 'createdAt': '2024-01-01T10:00:00Z',
                 'updatedAt': '2024-01-02T10:00:00Z'}]
    messages = [{'id': 'm-1', 'sessionId': 's-1', 'role': 'user', 'content': 'hi',
                 'timestamp': '2024-01-01T10:00:00Z'}]
    session = FakeSession([
        FakeResponse(201, {'id': 's-2', 'userId': 'u-1', 'title': 'New'}),
        FakeResponse(200, sessions),
        FakeResponse(201, {'id': 'm-2', 'sessionId': 's-1', 'role': 'assistant', 'content': 'hello'}),
        FakeResponse(200, messages),
    ])
    backend = make_backend(token_store, session, sleeps)

    assert backend.create_chat_session('u-1', 'New').id == 's-2'
    assert [s.id for s in backend.get_chat_sessions_by_user_id('u-1')] == ['s-1']
    assert backend.add_chat_message('s-1', 'assistant', 'hello').content == 'hello'
    assert [m.id for m in backend.get_chat_messages_by_session_id('s-1')] == ['m-1']

    assert session.calls[1]['params']['order'] == 'updatedAt.desc'
    assert session.calls[2]['json'] == {'sessionId': 's-1', 'role': 'assistant', 'content': 'hello'}
    assert session.calls[3]['params'] == {'select': '*', 'sessionId': 'eq.s-1', 'order': 'timestamp.asc'}


def test_user_analytics_from_stored_data(token_store, sleeps):
    twin = twin_row()
    twin['memory']['moodHistory'] = [{'mood': 'happy', 'intensity': 8, 'timestamp': '2024-01-01T10:00:00Z'},
                                     {'mood': 'calm', 'intensity': 4, 'timestamp': '2024-01-02T10:00:00Z'}]
    messages = [{'id': f'm-{h}', 'role': 'user', 'content': 'x', 'timestamp': f'2024-01-01T{h:02d}:00:00Z'}
                for h in (9, 10, 20)]
    session = FakeSession([
        FakeResponse(200, [{'id': 's-1', 'userId': 'u-1', 'title': 'Chat'}]),
        FakeResponse(200, messages),
        FakeResponse(200, twin),
    ])
    backend = make_backend(token_store, session, sleeps)

    analytics = backend.get_user_analytics('u-1')

    assert analytics == {
        'totalMessages': 3,
        'averageMood': 6,
        'mostActiveTime': 'morning',
        'favoriteTopics': ['general', 'personal', 'professional'],
    }


def test_backend_token_refresh_uses_grant_type(token_store, sleeps):
    token_store.save_tokens('expired', 'refresh-1')
    session = FakeSession([FakeResponse(401), FakeResponse(200, {'id': 'u-1'})],
                          post_responses=[FakeResponse(200, {'access_token': 'fresh', 'refresh_token': 'r2'})])
    backend = make_backend(token_store, session, sleeps)

    assert backend.get_user_by_id('u-1') == {'id': 'u-1'}

    refresh = session.post_calls[0]
    assert refresh['url'] == 'https://project.example.co/auth/v1/token'
    assert refresh['params'] == {'grant_type': 'refresh_token'}
    assert refresh['json'] == {'refresh_token': 'refresh-1'}
    assert session.calls[1]['headers']['Authorization'] == 'Bearer fresh'
    assert token_store.get_refresh_token() == 'r2'


class FakeSubscription:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True
        return self

    def unsubscribe(self):
        self.stopped = True


def test_subscribe_and_cleanup(token_store, sleeps):
    token_store.save_tokens('user-token')
    backend = make_backend(token_store, FakeSession(), sleeps, subscription_factory=FakeSubscription)
    received = []

    subscription = backend.subscribe_to_chat_messages('s-1', received.append)

    assert subscription.started
    assert subscription.kwargs['url'].startswith('wss://project.example.co/realtime/v1/websocket?apikey=anon-key')
    assert subscription.kwargs['table'] == 'chat_messages'
    assert subscription.kwargs['row_filter'] == 'sessionId=eq.s-1'
    assert subscription.kwargs['access_token'] == 'user-token'

    backend.cleanup()
    assert subscription.stopped


def test_health_check(token_store, sleeps):
    session = FakeSession(get_responses=[FakeResponse(404), FakeResponse(502)])
    backend = make_backend(token_store, session, sleeps)

    assert backend.health_check() is True
    assert backend.health_check() is False


def test_backend_401_leaves_app_session_alone(kv_store, sleeps):
    app_tokens = TokenStore(kv_store)
    backend_tokens = TokenStore(kv_store, namespace=BACKEND_TOKEN_NAMESPACE)
    app_session = FakeSession([FakeResponse(200, {'success': True, 'data': {
        'user': {'id': 'u-1', 'email': 'ada@example.com'},
        'accessToken': 'app-access',
        'refreshToken': 'app-refresh'}})])
    auth = AuthService(ApiClient('https://api.example.com', app_tokens, session=app_session, sleep=sleeps.append),
                       app_tokens)
    auth.login('ada@example.com', 'secret')

    backend_session = FakeSession([FakeResponse(401, {'message': 'JWT expired'})])
    backend = make_backend(backend_tokens, backend_session, sleeps)

    with pytest.raises(AuthExpiredError):
        backend.get_user_by_id('u-1')

    assert backend_session.calls[0]['headers']['Authorization'] == 'Bearer anon-key'
    assert backend_session.post_calls == []
    assert app_tokens.get_access_token() == 'app-access'
    assert app_tokens.get_refresh_token() == 'app-refresh'
    assert auth.is_authenticated
