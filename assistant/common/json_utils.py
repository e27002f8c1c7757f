"""
JSON Utilities for LLM Response Parsing.

Model replies may wrap JSON in markdown fences, surround it with prose, or
emit slightly malformed JSON (single quotes, trailing commas, unquoted keys).
Standard json.loads() is tried first and json-repair is used as the fallback.
"""

import json
import re
from typing import Any, Dict, List

from json_repair import repair_json


def parse_llm_json(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from an LLM response with robust error recovery.

    Args:
        text: Raw LLM response text that may contain JSON

    Returns:
        Parsed dictionary

    Raises:
        ValueError: If no JSON object can be extracted or repaired

    Example:
        >>> parse_llm_json('```json\\n{"type": "detail"}\\n```')
        {'type': 'detail'}
        >>> parse_llm_json("{'importance': 0.7,}")
        {'importance': 0.7}
    """
    parsed = _parse_any(text, opener="{", closer="}")

    if isinstance(parsed, dict):
        return parsed
    if isinstance(parsed, list):
        # Single object wrapped in brackets: [{...}]
        dicts = [item for item in parsed if isinstance(item, dict)]
        if len(dicts) == 1:
            return dicts[0]
        if dicts:
            merged: Dict[str, Any] = {}
            for item in dicts:
                merged.update(item)
            return merged
    raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}: {str(parsed)[:200]}")


def parse_llm_json_array(text: str) -> List[Any]:
    """
    Parse a JSON array from an LLM response.

    An object reply holding exactly one list value (e.g. ``{"jobs": [...]}``)
    is unwrapped.

    Raises:
        ValueError: If no JSON array can be extracted or repaired
    """
    parsed = _parse_any(text, opener="[", closer="]")

    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        lists = [v for v in parsed.values() if isinstance(v, list)]
        if len(lists) == 1:
            return lists[0]
    raise ValueError(f"Expected a JSON array, got {type(parsed).__name__}: {str(parsed)[:200]}")


def _parse_any(text: str, opener: str, closer: str) -> Any:
    if not text or not text.strip():
        raise ValueError("Empty input: no JSON content to parse")

    json_str = _strip_markdown_blocks(text.strip())
    json_str = _extract_json_span(json_str, opener, closer)

    try:
        return json.loads(json_str)
    except json.JSONDecodeError:
        pass

    try:
        repaired = repair_json(json_str, return_objects=True)
    except Exception as e:
        raise ValueError(
            f"Failed to parse or repair JSON: {e}\n"
            f"Original text (first 500 chars): {text[:500]}"
        )

    if isinstance(repaired, str):
        # json-repair hands back "" when nothing could be salvaged
        if not repaired:
            raise ValueError(f"Unrepairable JSON (first 500 chars): {text[:500]}")
        return json.loads(repaired)
    return repaired


def _strip_markdown_blocks(text: str) -> str:
    """
    Remove markdown code block wrappers from text.

    Handles ```json ... ``` and bare ``` ... ``` fences.
    """
    result = text

    if result.startswith("```json"):
        result = result[7:]
    elif result.startswith("```"):
        result = result[3:]

    if result.endswith("```"):
        result = result[:-3]

    return result.strip()


def _extract_json_span(text: str, opener: str, closer: str) -> str:
    """
    Extract the outermost JSON span starting with ``opener``.

    Falls back to the other bracket type so that an object reply can still be
    unwrapped by the caller.

    Raises:
        ValueError: If no JSON pattern is found
    """
    text = text.strip()

    if text[:1] in ("{", "["):
        return text

    match = re.search(re.escape(opener) + r".*" + re.escape(closer), text, re.DOTALL)
    if match:
        return match.group(0)
    match = re.search(r"[\{\[].*[\}\]]", text, re.DOTALL)
    if match:
        return match.group(0)

    raise ValueError(f"No JSON found in text: {text[:200]}")
