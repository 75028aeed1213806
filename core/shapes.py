"""Shape classification for loosely-typed parsed JSON values."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional


class Shape(Enum):
    OBJECT = 'object'
    ARRAY = 'array'
    SCALAR = 'scalar'
    MISSING = 'missing'


def classify(value: Any) -> Shape:
    if value is None:
        return Shape.MISSING
    if isinstance(value, dict):
        return Shape.OBJECT
    if isinstance(value, (list, tuple)):
        return Shape.ARRAY
    return Shape.SCALAR


def is_object(value: Any) -> bool:
    return classify(value) is Shape.OBJECT


def is_array(value: Any) -> bool:
    return classify(value) is Shape.ARRAY


def field(data: Mapping[str, Any], key: str) -> Shape:
    """Classify ``data[key]``; absent keys and explicit nulls are both MISSING."""
    if not isinstance(data, Mapping):
        return Shape.MISSING
    return classify(data.get(key))


def to_text(value: Any) -> Optional[str]:
    """Render a scalar the way a JSON producer would have meant it as a string.

    Objects and arrays have no text form and give ``None``, except an object
    carrying a scalar ``name`` (``{"name": "park"}``), which gives that name.
    """
    if value is None:
        return None
    if classify(value) is Shape.OBJECT:
        nested = value.get('name')
        return to_text(nested) if classify(nested) is Shape.SCALAR else None
    if classify(value) is Shape.ARRAY:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def empty_scene() -> Dict[str, Any]:
    return {'background': None, 'music': None, 'sfx': None}


def empty_character(name: Optional[str] = None) -> Dict[str, Any]:
    return {'name': name, 'expression': None, 'outfit': None, 'position': None, 'action': None}


def empty_canonical() -> Dict[str, Any]:
    return {'scene': None, 'characters': [], 'choices': []}
