"""
Canonical scene schema and its validator.
"""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

from jsonschema import Draft202012Validator

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent.parent / 'config' / 'scene_schema.json'


def _format_path(path) -> str:
    out = ''
    for part in path:
        out += f"[{part}]" if isinstance(part, int) else (f".{part}" if out else str(part))
    return out or '$'


class SceneSchema:
    """Wraps ``scene_schema.json`` and reports violations as readable strings."""

    def __init__(self, schema_path: str | Path = DEFAULT_SCHEMA_PATH):
        self.schema_path = Path(schema_path)
        if not self.schema_path.exists():
            raise FileNotFoundError(f"Schema not found: {self.schema_path}")
        self.schema: Dict[str, Any] = json.loads(self.schema_path.read_text(encoding='utf-8'))
        self._validator = Draft202012Validator(self.schema)

    def errors(self, data: Any) -> List[str]:
        found = sorted(self._validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
        return [f"{_format_path(err.absolute_path)}: {err.message}" for err in found]

    def is_valid(self, data: Any) -> bool:
        return self._validator.is_valid(data)


@lru_cache(maxsize=None)
def default_schema() -> SceneSchema:
    return SceneSchema()
