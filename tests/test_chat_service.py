import pytest

from digital_twin.services.chat_service import CONNECTION_NOTICE, FALLBACK_REPLY, ChatService
from digital_twin.services.digital_twin_store import DigitalTwinStore
from digital_twin.services.language_model import LanguageModelService
from digital_twin.utils.llm_base import ChatBackend
from digital_twin.utils.offline_llm import OfflineChatBackend
from digital_twin.utils.prompts import MOOD_ANALYSIS_MARKER


class RecordingBackend(ChatBackend):
    name = 'recording'

    def __init__(self, fail_replies=False):
        self.fail_replies = fail_replies
        self.reply_requests = []

    def complete(self, messages, model, temperature, max_tokens):
        if MOOD_ANALYSIS_MARKER in messages[-1]['content']:
            return '{"mood": "happy", "intensity": 6}'
        if self.fail_replies:
            raise ConnectionError('unreachable')
        self.reply_requests.append({'messages': messages, 'temperature': temperature, 'max_tokens': max_tokens})
        return f'reply {len(self.reply_requests)}'


@pytest.fixture
def store():
    s = DigitalTwinStore()
    s.initialize_profile('user-1')
    return s


def test_send_message_records_both_messages_and_mood(store):
    backend = RecordingBackend()
    chat = ChatService(store, LanguageModelService(backend))

    reply = chat.send_message('  I had a good day  ')

    assert reply.ok
    assert [(m.role, m.content) for m in store.current_session.messages] == [
        ('user', 'I had a good day'),
        ('assistant', 'reply 1'),
    ]
    assert reply.mood.mood == 'happy'
    assert reply.mood.context == 'I had a good day'
    assert store.mood_history == [reply.mood]
    assert store.profile.memory.conversations == ['user: I had a good day', 'assistant: reply 1']


def test_reply_context_includes_new_message_and_is_windowed(store):
    backend = RecordingBackend()
    chat = ChatService(store, LanguageModelService(backend), history_window=10)

    for i in range(7):
        chat.send_message(f'message {i}')

    request = backend.reply_requests[-1]
    conversation = request['messages'][1:]
    assert request['messages'][0]['role'] == 'system'
    assert len(conversation) == 10
    assert conversation[-1] == {'role': 'user', 'content': 'message 6'}
    assert (request['temperature'], request['max_tokens']) == (0.7, 500)


def test_failed_reply_appends_fallback_and_keeps_user_message(store):
    chat = ChatService(store, LanguageModelService(RecordingBackend(fail_replies=True)))

    reply = chat.send_message('hello?')

    assert not reply.ok
    assert reply.error == CONNECTION_NOTICE
    assert reply.assistant_message.content == FALLBACK_REPLY
    assert [m.content for m in store.current_session.messages] == ['hello?', FALLBACK_REPLY]


def test_blank_message_is_rejected(store):
    chat = ChatService(store, LanguageModelService(OfflineChatBackend()))

    with pytest.raises(ValueError):
        chat.send_message('   ')
    assert store.current_session is None


def test_offline_conversation_without_mood_tracking(store):
    chat = ChatService(store, LanguageModelService(OfflineChatBackend()), track_mood=False)

    reply = chat.send_message('I feel so stressed about work')

    assert reply.mood is None
    assert store.mood_history == []
    assert 'weighing on you' in reply.assistant_message.content
