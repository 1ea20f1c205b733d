from __future__ import annotations

"""Decode LLM option payloads into a plain ordered list.

JSON mode forces the model to answer with an object, so the option array
arrives in one of three shapes. Each shape is a named variant; anything else
is a decode failure rather than a silent fallback.

Precedence when an object matches more than one variant: a list under
``options`` wins over whatever list happens to be the first value.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Union

from ..errors import ShapeValidationError


@dataclass(frozen=True)
class Bare:
    items: List[Any]


@dataclass(frozen=True)
class OptionsKey:
    items: List[Any]


@dataclass(frozen=True)
class FirstValue:
    key: str
    items: List[Any]


OptionsPayload = Union[Bare, OptionsKey, FirstValue]


def classify(raw: Any) -> OptionsPayload:
    if isinstance(raw, list):
        return Bare(list(raw))
    if isinstance(raw, dict):
        if isinstance(raw.get("options"), list):
            return OptionsKey(list(raw["options"]))
        if raw:
            key, value = next(iter(raw.items()))
            if isinstance(value, list):
                return FirstValue(str(key), list(value))
    raise ShapeValidationError(f"Expected an array of options but received: {_preview(raw)}")


def decode_options(raw: Any, required_fields: Sequence[str] = ("id", "label", "description")) -> List[Dict[str, Any]]:
    """Return the option list carried by ``raw``.

    Raises ShapeValidationError when the payload is not one of the three
    variants, is empty, or any option lacks a required field.
    """
    payload = classify(raw)
    items = payload.items
    if not items:
        raise ShapeValidationError("Expected a non-empty array of options")
    options: List[Dict[str, Any]] = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ShapeValidationError(f"Option {idx} is not an object: {_preview(item)}")
        missing = [f for f in required_fields if item.get(f) in (None, "")]
        if missing:
            raise ShapeValidationError(f"Option {idx} is missing required fields: {', '.join(missing)}")
        option = dict(item)
        option["id"] = str(option["id"])
        options.append(option)
    return options


def _preview(value: Any, limit: int = 200) -> str:
    text = repr(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."
