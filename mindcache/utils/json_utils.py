"""
JSON utilities for cleaning LLM responses.
"""

import json
from typing import Any, Dict


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def extract_json_object(response: str) -> Dict[str, Any]:
    """Parse the first JSON object in an LLM response.

    Reasoning models sometimes wrap the object in prose; everything outside the
    outermost braces is ignored.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    cleaned = clean_json_response(response)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find('{')
        end = cleaned.rfind('}')
        if start == -1 or end <= start:
            raise ValueError('No JSON object found in model response')
        parsed = json.loads(cleaned[start:end + 1])

    if not isinstance(parsed, dict):
        raise ValueError(f'Expected a JSON object, got {type(parsed).__name__}')
    return parsed
