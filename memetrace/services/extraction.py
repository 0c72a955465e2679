"""
Locate and coerce JSON objects embedded in free-text model responses.

Extraction happens in two phases: find a candidate JSON span (fenced code
block first, then the first brace-delimited object in the raw text) and parse
it; the stages then coerce individual fields with the helpers below so that no
raw model value reaches the domain models unchecked.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional, Sequence

__all__ = [
    "extract_json_object",
    "coerce_index",
    "coerce_number",
    "coerce_score",
    "coerce_text",
    "coerce_string_list",
]

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?[ \t]*\n?([\s\S]*?)```")
_decoder = json.JSONDecoder()

def _span_end(text: str, start: int) -> Optional[int]:
    """Index just past the brace closing the one at start; None when it never closes."""
    depth = 0
    in_string = False
    escaped = False
    for position in range(start, len(text)):
        char = text[position]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return position + 1
    return None

def _first_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Return the first top-level brace-delimited span of text that parses as a JSON object.

    A span that fails to parse is skipped as a whole, never searched for nested
    objects; an unterminated span ends the search.
    """
    start = text.find("{")
    while start != -1:
        try:
            parsed, _ = _decoder.raw_decode(text, start)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed
        end = _span_end(text, start)
        if end is None:
            return None
        start = text.find("{", end)
    return None

def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Extract the first JSON object from a model response.

    Fenced blocks are tried in order before the raw text, so prose around a
    fence never changes the result. Returns None when nothing parses to an object.
    """
    if not text or not text.strip():
        return None

    for match in _FENCED_BLOCK.finditer(text):
        parsed = _first_object(match.group(1))
        if parsed is not None:
            return parsed

    return _first_object(text)

def coerce_number(value: Any) -> Optional[float]:
    """Finite float from a number or numeric string; None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None

def coerce_index(value: Any) -> Optional[int]:
    """Integer index from an int, integral float or integer string; None otherwise."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = coerce_number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)

def coerce_score(value: Any, default: float = 0.0, low: float = 0.0, high: float = 100.0) -> float:
    """Number within [low, high]; anything else becomes default."""
    number = coerce_number(value)
    if number is None or not low <= number <= high:
        return default
    return number

def coerce_text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default

def coerce_string_list(value: Any, default: Sequence[str] = ()) -> List[str]:
    """Non-empty strings from a JSON array; default when value is not an array or has none."""
    if not isinstance(value, list):
        return list(default)
    items = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            continue
        text = str(item).strip()
        if text:
            items.append(text)
    return items or list(default)
