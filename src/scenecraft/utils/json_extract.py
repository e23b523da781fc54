"""Pull structured data out of model free-text.

Chat models wrap JSON in prose or markdown fences more often than not. The
contract here is narrow: return the first syntactically valid JSON array
found in the text, scanning left to right, or an empty list.
"""
from typing import Any, Iterator, List
import json

_decoder = json.JSONDecoder()


def iter_json_arrays(text: str) -> Iterator[List[Any]]:
    """Yield every top-level JSON array that decodes, in order of position."""
    if not text:
        return
    pos = text.find("[")
    while pos != -1:
        try:
            value, end = _decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            pos = text.find("[", pos + 1)
            continue
        if isinstance(value, list):
            yield value
            pos = text.find("[", end)
        else:
            pos = text.find("[", pos + 1)


def first_json_array(text: str) -> List[Any]:
    for array in iter_json_arrays(text):
        return array
    return []


def extract_string_list(text: str) -> List[str]:
    """First JSON array as trimmed, non-empty strings; non-string items are dropped."""
    items = first_json_array(text)
    result = []
    for item in items:
        if not isinstance(item, str):
            continue
        item = item.strip()
        if item:
            result.append(item)
    return result


def extract_object_list(text: str) -> List[dict]:
    """First JSON array, keeping only its object items."""
    return [item for item in first_json_array(text) if isinstance(item, dict)]
