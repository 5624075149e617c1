import math
from datetime import timedelta

import pytest

from digital_twin.models.auth import AuthSession, AuthUser
from digital_twin.models.core import (ChatMessage, ChatSession, MoodEntry, PersonalityTraits, clamp_intensity,
                                      default_profile)
from digital_twin.utils.timestamp_utils import from_iso, utc_now


@pytest.mark.parametrize('value, expected', [
    (0, 1),
    (1, 1),
    (7, 7),
    (10, 10),
    (11, 10),
    (-5, 1),
    (6.6, 7),
    ('8', 8),
    ('high', 5),
    (None, 5),
    (math.nan, 5),
])
def test_clamp_intensity(value, expected):
    assert clamp_intensity(value) == expected


def test_mood_entry_clamps_on_construction():
    assert MoodEntry('happy', 99).intensity == 10
    assert MoodEntry.create('sad', 0, '').context is None


def test_chat_message_rejects_unknown_roles():
    with pytest.raises(ValueError):
        ChatMessage(role='system', content='nope')


def test_chat_session_updated_at_never_precedes_created_at():
    future = utc_now() + timedelta(days=1)
    session = ChatSession(user_id='u', title='t', created_at=future, updated_at=future)

    session.append_message(ChatMessage(role='user', content='hi'))

    assert session.updated_at >= session.created_at


def test_personality_caps_keep_most_recent():
    traits = PersonalityTraits(traits=list('abcdefg'), interests=list('123456'), goals=['x', 'y', 'z', 'w'])

    assert traits.traits == list('cdefg')
    assert traits.interests == list('23456')
    assert traits.goals == ['y', 'z', 'w']


def test_profile_uses_camel_case_wire_names():
    payload = default_profile('u-1').to_dict()

    assert payload['userId'] == 'u-1'
    assert payload['personality']['communicationStyle'] == 'friendly'
    assert payload['settings']['responseLength'] == 'medium'
    assert payload['memory']['moodHistory'] == []


def test_from_iso_accepts_zulu_suffix_and_rejects_garbage():
    parsed = from_iso('2024-05-01T12:30:00Z')
    assert parsed.utcoffset() == timedelta(0)
    assert from_iso('not a date', None) is None


def test_auth_session_requires_access_token():
    user = AuthUser(id='u', email='a@b.c')
    with pytest.raises(ValueError):
        AuthSession(user=user, access_token='', refresh_token='r', expires_at=utc_now())

    session = AuthSession(user=user, access_token='a', refresh_token='r', expires_at=utc_now() - timedelta(seconds=1))
    assert session.is_expired()
    assert session.to_dict()['accessToken'] == 'a'
