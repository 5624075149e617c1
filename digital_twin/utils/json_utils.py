"""
Helpers for reading JSON out of language model answers.
"""

import json
import re
from typing import Any

CODE_FENCE = re.compile(r'^```(?:json)?\s*|\s*```$', re.IGNORECASE)


def clean_json_response(response: str) -> str:
    """Strip surrounding code fence markers from a model answer.

    Args:
        response: Raw model answer

    Returns:
        Answer text without the fences
    """
    return CODE_FENCE.sub('', response.strip()).strip()


def _embedded_json(text: str) -> str:
    starts = [i for i in (text.find('{'), text.find('[')) if i != -1]
    if not starts:
        return text
    start = min(starts)
    end = text.rfind('}' if text[start] == '{' else ']')
    return text[start:end + 1] if end > start else text


def parse_json_response(response: str) -> Any:
    """Parse the JSON payload of a model answer.

    Models sometimes wrap the payload in prose ("Sure! {...}"); the outermost
    object or array is used in that case.

    Args:
        response: Raw model answer, optionally wrapped in a code block

    Returns:
        Decoded JSON value

    Raises:
        ValueError: If no valid JSON can be recovered
    """
    text = clean_json_response(response or '')
    try:
        return json.loads(text)
    except ValueError:
        return json.loads(_embedded_json(text))
