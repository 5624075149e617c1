import pytest
from botocore.exceptions import ClientError

from digital_twin.utils.bedrock_llm import BedrockChatBackend, BedrockLLMError, to_bedrock_messages
from digital_twin.utils.config import BedrockLLMConfig

CONFIG = BedrockLLMConfig(region='us-east-1',
                          model_id='test-model',
                          max_tokens=100,
                          temperature=0.7,
                          retry_attempts=3,
                          retry_delay=1.0)


def throttled():
    return ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'}}, 'ConverseStream')


class FakeBedrockRuntime:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def converse_stream(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return {'stream': [{'contentBlockDelta': {'delta': {'text': chunk}}} for chunk in outcome]}


def test_to_bedrock_messages_splits_system_and_merges_turns():
    system, turns = to_bedrock_messages([
        {'role': 'system', 'content': 'Be kind'},
        {'role': 'user', 'content': 'one'},
        {'role': 'user', 'content': 'two'},
        {'role': 'assistant', 'content': 'reply'},
        {'role': 'user', 'content': '   '},
    ])

    assert system == [{'text': 'Be kind'}]
    assert turns == [
        {'role': 'user', 'content': [{'text': 'one'}, {'text': 'two'}]},
        {'role': 'assistant', 'content': [{'text': 'reply'}]},
    ]


def test_complete_streams_text():
    runtime = FakeBedrockRuntime([['Hel', 'lo']])
    backend = BedrockChatBackend(CONFIG, client=runtime)

    reply = backend.complete([{'role': 'system', 'content': 'sys'}, {'role': 'user', 'content': 'Hi'}], 'gpt-4', 0.2, 50)

    assert reply == 'Hello'
    call = runtime.calls[0]
    assert call['modelId'] == 'test-model'
    assert call['inferenceConfig'] == {'maxTokens': 50, 'temperature': 0.2}
    assert call['system'] == [{'text': 'sys'}]


def test_complete_retries_with_backoff_then_succeeds():
    sleeps = []
    runtime = FakeBedrockRuntime([throttled(), ['ok']])
    backend = BedrockChatBackend(CONFIG, client=runtime, sleep=sleeps.append)

    assert backend.complete([{'role': 'user', 'content': 'Hi'}], 'm', 0.7, 10) == 'ok'
    assert len(sleeps) == 1
    assert 1.0 <= sleeps[0] <= 2.0


def test_complete_gives_up_after_retry_attempts():
    sleeps = []
    runtime = FakeBedrockRuntime([throttled(), throttled(), throttled()])
    backend = BedrockChatBackend(CONFIG, client=runtime, sleep=sleeps.append)

    with pytest.raises(BedrockLLMError):
        backend.complete([{'role': 'user', 'content': 'Hi'}], 'm', 0.7, 10)
    assert len(runtime.calls) == 3
    assert len(sleeps) == 2


def test_complete_requires_a_conversation_turn():
    backend = BedrockChatBackend(CONFIG, client=FakeBedrockRuntime([]))

    with pytest.raises(BedrockLLMError):
        backend.complete([{'role': 'system', 'content': 'only system'}], 'm', 0.7, 10)


def test_health_check():
    assert BedrockChatBackend(CONFIG, client=FakeBedrockRuntime([['OK']])).health_check() is True
    failing = FakeBedrockRuntime([RuntimeError('no creds')])
    assert BedrockChatBackend(CONFIG, client=failing).health_check() is False
