import pytest

from digital_twin.utils.json_utils import clean_json_response, parse_json_response


def test_code_fences_are_removed():
    assert clean_json_response('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert clean_json_response('```\n[1, 2]\n```') == '[1, 2]'
    assert clean_json_response('  {"a": 1}  ') == '{"a": 1}'


def test_payload_embedded_in_prose_is_recovered():
    assert parse_json_response('Sure! Here it is: {"mood": "calm", "intensity": 3}. Hope that helps.') == {
        'mood': 'calm',
        'intensity': 3,
    }
    assert parse_json_response('Insights: ["a", "b"]') == ['a', 'b']


@pytest.mark.parametrize('answer', ['', 'no json here', '{broken'])
def test_unparseable_answers_raise_value_error(answer):
    with pytest.raises(ValueError):
        parse_json_response(answer)
