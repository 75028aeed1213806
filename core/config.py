"""
YAML configuration for the scene linter.

Vocabulary lists under ``lint`` can be replaced from the environment (or a
``.env`` file) with comma-separated values, e.g.
``SCENE_LINT_VALID_CHARACTERS="Alice, Bob"``.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

ENV_PREFIX = 'SCENE_LINT_'
ENV_LIST_KEYS = ('valid_expressions', 'valid_backgrounds', 'valid_characters')


def split_env_list(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    return [part.strip() for part in raw.split(',') if part.strip()]


class Config:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Config not found: {self.path}")
        load_dotenv()
        self.data: Dict[str, Any] = yaml.safe_load(self.path.read_text(encoding='utf-8')) or {}

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def section(self, name: str) -> Dict[str, Any]:
        return dict(self.data.get(name) or {})

    @property
    def lint(self) -> Dict[str, Any]:
        """The ``lint`` section with environment overrides applied."""
        values = self.section('lint')
        for key in ENV_LIST_KEYS:
            override = split_env_list(os.getenv(ENV_PREFIX + key.upper()))
            if override is not None:
                values[key] = override
        return values

    @property
    def logging(self) -> Dict[str, Any]:
        return self.section('logging')

    @property
    def supported_extensions(self) -> List[str]:
        exts = self.section('source_files').get('supported_extensions') or ['.txt', '.md']
        return [str(ext).lower() for ext in exts]
