import json

import pytest
import requests

from digital_twin.utils.token_store import InMemoryKeyValueStore, TokenStore


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        if text is not None:
            self.text = text
        elif body is not None:
            self.text = json.dumps(body)
        else:
            self.text = ''
        self.content = self.text.encode()

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Replays queued responses (or raises queued exceptions) and records every call."""

    def __init__(self, responses=None, post_responses=None, get_responses=None):
        self.headers = {}
        self.responses = list(responses or [])
        self.post_responses = list(post_responses or [])
        self.get_responses = list(get_responses or [])
        self.calls = []
        self.post_calls = []
        self.get_calls = []

    @staticmethod
    def _next(queue):
        if not queue:
            raise AssertionError('Unexpected request: no queued response')
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def request(self, method, url, **kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        return self._next(self.responses)

    def post(self, url, **kwargs):
        self.post_calls.append({'url': url, **kwargs})
        return self._next(self.post_responses)

    def get(self, url, **kwargs):
        self.get_calls.append({'url': url, **kwargs})
        return self._next(self.get_responses)


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def token_store(kv_store):
    return TokenStore(kv_store)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def network_error():
    return requests.ConnectionError('connection refused')
