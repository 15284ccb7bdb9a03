"""
Resilient JSON Decoder
======================
Repairs the usual damage in model output (markdown fences, chatter around
the object, control characters, trailing commas) before giving up.

``decode`` is total over strings: it returns the parsed value or raises
``DecodeError``, never anything else.
"""

import re
import json
import logging
from typing import Any, List, Optional

from app.core.exceptions import DecodeError

logger = logging.getLogger(__name__)


_JSON_FENCE = re.compile(r'```json\s*(.*?)```', re.IGNORECASE | re.DOTALL)
_ANY_FENCE = re.compile(r'```[a-zA-Z0-9_-]*\s*(.*?)```', re.DOTALL)
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F]')
_TRAILING_COMMA = re.compile(r',(\s*[}\]])')


def _try_parse(text: str) -> Optional[List[Any]]:
    # Wrapped in a list so a decoded JSON null is distinguishable from failure
    try:
        return [json.loads(text)]
    except (ValueError, RecursionError):
        return None


def _extract_candidate(text: str) -> str:
    match = _JSON_FENCE.search(text)
    if match:
        return match.group(1).strip()

    match = _ANY_FENCE.search(text)
    if match:
        return match.group(1).strip()

    start = text.find('{')
    end = text.rfind('}')
    if start != -1 and end > start:
        return text[start:end + 1]
    return text.strip()


def _clean(text: str) -> str:
    text = _CONTROL_CHARS.sub('', text)
    return _TRAILING_COMMA.sub(r'\1', text)


def decode(raw_text: Any) -> Any:
    """
    Decode model output into a Python value.

    Strategies, in order: strict parse; fenced block or outermost braces;
    control-character and trailing-comma cleanup; and finally the same
    cleanup on the text with every backtick removed.

    Raises:
        DecodeError: if no strategy yields valid JSON
    """
    if not isinstance(raw_text, str):
        raise DecodeError(raw_text, reason=f"expected text, got {type(raw_text).__name__}")

    parsed = _try_parse(raw_text)
    if parsed is not None:
        return parsed[0]

    candidate = _clean(_extract_candidate(raw_text))
    parsed = _try_parse(candidate)
    if parsed is not None:
        return parsed[0]

    parsed = _try_parse(candidate.replace('```', ''))
    if parsed is not None:
        return parsed[0]

    # Last resort: drop every backtick from the original text
    fallback = _clean(raw_text.replace('`', '').strip())
    parsed = _try_parse(fallback)
    if parsed is not None:
        return parsed[0]

    start = fallback.find('{')
    end = fallback.rfind('}')
    if start != -1 and end > start:
        parsed = _try_parse(fallback[start:end + 1])
        if parsed is not None:
            return parsed[0]

    logger.warning(f"⚠️  JSON decode failed after all repair strategies ({len(raw_text)} chars)")
    raise DecodeError(raw_text)


def decode_object(raw_text: Any) -> dict:
    """Decode and require a JSON object at the top level."""
    value = decode(raw_text)
    if not isinstance(value, dict):
        raise DecodeError(raw_text, reason=f"expected a JSON object, got {type(value).__name__}")
    return value


def strip_markdown_fence(text: str) -> str:
    """Unwrap a Markdown answer the model wrapped in a ```markdown fence."""
    stripped = text.strip()
    match = re.fullmatch(r'```(?:markdown|md)?\s*(.*?)\s*```', stripped, re.IGNORECASE | re.DOTALL)
    if match:
        return match.group(1).strip()
    return stripped
