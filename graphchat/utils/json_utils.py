"""
JSON utilities for cleaning LLM responses.
"""

import json
from typing import Any, Dict, Optional


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def loads_json_object(response: str) -> Optional[Dict[str, Any]]:
    """Decode an LLM response that should hold a single JSON object.

    Args:
        response: Raw LLM response, optionally wrapped in a code block

    Returns:
        The decoded object, or None when the text is not a JSON object
    """
    if not response or not response.strip():
        return None

    try:
        data = json.loads(clean_json_response(response))
    except json.JSONDecodeError:
        return None

    return data if isinstance(data, dict) else None
