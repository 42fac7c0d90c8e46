"""Response extraction: normalize backend JSON into a single text value.

Each format walks an ordered fallback chain. A payload matching no known
shape is not an error: it is stringified and a warning is logged, so the
caller always receives a string.
"""

import json
import logging
from typing import Any, List, Optional

from ai_gateway.builder import BedrockFamily
from ai_gateway.config import ApiFormat

_logger = logging.getLogger("ai_gateway")


def _dig(data: Any, *path: Any) -> Any:
    """Follow dict keys / list indexes, returning None on any miss."""
    current = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return None
            current = current[step]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(step)
    return current


def _first_text(data: Any, paths: List[tuple]) -> Optional[str]:
    for path in paths:
        value = _dig(data, *path)
        if isinstance(value, str) and value:
            return value
    return None


_GENERIC_PATHS = [("response",), ("text",), ("content",)]

_OLLAMA_PATHS = [("response",), ("message", "content")]

_OPENAI_PATHS = [
    ("choices", 0, "message", "content"),
    ("choices", 0, "text"),
]

_BEDROCK_PATHS = {
    BedrockFamily.ANTHROPIC: [("content", 0, "text"), ("completion",)],
    BedrockFamily.AMAZON: [("results", 0, "outputText")],
    BedrockFamily.AI21: [("completions", 0, "data", "text")],
    BedrockFamily.COHERE: [("generations", 0, "text")],
}


def stringify_payload(data: Any) -> str:
    """Last-resort rendering of an unrecognized payload."""
    try:
        return json.dumps(data, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(data)


def extract_response_text(
    data: Any,
    api_format: ApiFormat,
    family: Optional[BedrockFamily] = None,
) -> str:
    """Extract the completion text from a provider response.

    Args:
        data: The decoded JSON response body.
        api_format: The wire format the request was sent in.
        family: Bedrock model family, for Bedrock responses.

    Returns:
        The completion text, or the whole payload as JSON when no known
        field is present.
    """
    if isinstance(data, str):
        return data

    if api_format == ApiFormat.BEDROCK:
        paths = _BEDROCK_PATHS.get(family, []) if family is not None else []
    elif api_format == ApiFormat.OLLAMA:
        paths = _OLLAMA_PATHS + _GENERIC_PATHS
    else:
        paths = _OPENAI_PATHS + _GENERIC_PATHS

    text = _first_text(data, paths)
    if text is not None:
        return text

    _logger.warning(
        "Could not extract response text (format=%s, family=%s); "
        "returning JSON payload",
        api_format.value,
        family.value if family is not None else None,
    )
    return stringify_payload(data)
