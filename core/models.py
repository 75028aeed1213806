"""Records passed between the linter stages."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from core.config import Config


@dataclass
class Candidate:
    """A span of the response suspected to hold scene JSON."""
    raw: str
    full_match: str
    source_pattern: str
    priority: int
    confidence: int = 0
    is_valid: bool = False
    parse_error: Optional[str] = None
    parsed_value: Any = None


@dataclass
class ExtractionResult:
    raw_json: Optional[str] = None
    narrative: str = ''
    source: str = 'none'
    confidence: int = 0
    fixes: List[str] = field(default_factory=list)
    attempts: int = 0


@dataclass
class LintOptions:
    valid_expressions: List[str] = field(default_factory=list)
    valid_backgrounds: List[str] = field(default_factory=list)
    valid_characters: List[str] = field(default_factory=list)
    allow_fallback: bool = True
    # Accepted for compatibility; the pipeline always degrades gracefully.
    strict: bool = False

    @classmethod
    def coerce(cls, options: Union['LintOptions', Mapping[str, Any], None]) -> 'LintOptions':
        if isinstance(options, LintOptions):
            return options
        if not options:
            return cls()
        aliases = {
            'validExpressions': 'valid_expressions',
            'validBackgrounds': 'valid_backgrounds',
            'validCharacters': 'valid_characters',
            'allowFallback': 'allow_fallback',
        }
        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            key = aliases.get(key, key)
            if key in cls.__dataclass_fields__ and value is not None:
                kwargs[key] = value
        for key in ('valid_expressions', 'valid_backgrounds', 'valid_characters'):
            if key in kwargs:
                kwargs[key] = [str(v) for v in kwargs[key] if v is not None and str(v).strip()]
        return cls(**kwargs)

    @classmethod
    def from_config(cls, config: Config) -> 'LintOptions':
        return cls.coerce(config.lint)


@dataclass
class LintResult:
    scene: Optional[Dict[str, Any]] = None
    narrative: str = ''
    source: str = 'none'
    confidence: int = 0
    fixes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    diagnostics: Dict[str, int] = field(default_factory=lambda: {
        'original_length': 0,
        'extraction_attempts': 0,
        'syntax_fixes_applied': 0,
        'schema_fixes_applied': 0,
        'value_normalizations_applied': 0,
    })

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
