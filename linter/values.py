"""Value normalization for canonical scene data.

Canonicalizes field values (expressions, positions, actions, asset names,
character names and choice text) against the synonym tables and against the
caller's vocabularies. Works on a deep copy and records every change.
"""
from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from core.lookups import (
    ACTION_LOOKUP,
    EXPRESSION_LOOKUP,
    EXPRESSION_SYNONYMS,
    POSITION_LOOKUP,
)
from core.keywords import match_expression
from core.models import LintOptions
from linter.schema_fix import dedupe_characters

logger = logging.getLogger(__name__)

MAX_LABEL_CHARS = 100
MAX_SUGGEST_DISTANCE = 3

_QUOTES_RE = re.compile(r"^[\"']+|[\"']+$")
_IMAGE_EXT_RE = re.compile(r"\.(png|jpe?g|gif|webp)$", re.IGNORECASE)
_AUDIO_EXT_RE = re.compile(r"\.(mp3|ogg|wav|m4a)$", re.IGNORECASE)
_BACKGROUND_PREFIX_RE = re.compile(r"^(?:backgrounds?|bg)[/\\]", re.IGNORECASE)
_AUDIO_PREFIX_RE = re.compile(r"^(?:music|audio|sounds?|sfx|bgm)[/\\]", re.IGNORECASE)
_NAME_PREFIX_RE = re.compile(r"^(?:character|char|npc|speaker)\s*:\s*", re.IGNORECASE)
_EXPRESSION_PREFIX_RE = re.compile(r"^(?:expression|emotion|mood|feeling)\s*:\s*", re.IGNORECASE)
_SPRITE_PREFIX_RE = re.compile(r"^sprites?[/\\]", re.IGNORECASE)
_LIST_MARKER_RE = re.compile(r"^(?:\d+|[A-Za-z])[.):]\s+")
_LEADING_EMOJI_RE = re.compile(r"^[\U0001F300-\U0001F9FF\u2600-\u27BF]\uFE0F?\s*(?=[\w\"'])")
_EMPHASIS_RE = re.compile(r"^[*_]+|[*_]+$")


@dataclass
class ValueResult:
    normalized: Dict[str, Any] = field(default_factory=dict)
    fixes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def strip_quotes(value: str) -> str:
    return _QUOTES_RE.sub('', value.strip()).strip()


def _squash(value: str) -> str:
    return re.sub(r"[\s_-]", '', value.lower())


# =============================================================================
# Scene values
# =============================================================================

def normalize_background(value: Any, valid_backgrounds: Sequence[str] = ()) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None

    cleaned = strip_quotes(value)
    cleaned = _BACKGROUND_PREFIX_RE.sub('', cleaned)
    cleaned = _IMAGE_EXT_RE.sub('', cleaned)
    cleaned = strip_quotes(cleaned)
    lowered = cleaned.lower()

    if valid_backgrounds and lowered:
        for bg in valid_backgrounds:
            if bg.lower() == lowered:
                return bg
        for bg in valid_backgrounds:
            if bg.lower() in lowered or lowered in bg.lower():
                return bg
        for bg in valid_backgrounds:
            if _squash(bg) == _squash(cleaned):
                return bg

    slug = re.sub(r"[\s_]+", '_', cleaned).strip('_')
    return slug or None


def normalize_audio(value: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    cleaned = strip_quotes(value)
    cleaned = _AUDIO_PREFIX_RE.sub('', cleaned)
    cleaned = _AUDIO_EXT_RE.sub('', cleaned)
    return cleaned or None


# =============================================================================
# Character values
# =============================================================================

def normalize_character_name(name: Any, valid_characters: Sequence[str] = ()) -> Optional[str]:
    if not name or not isinstance(name, str):
        return None

    cleaned = strip_quotes(name)
    cleaned = _NAME_PREFIX_RE.sub('', cleaned)
    cleaned = re.sub(r"^\{\{|\}\}$", '', cleaned).strip()

    if valid_characters and cleaned:
        lowered = cleaned.lower()
        for char in valid_characters:
            if char.lower() == lowered:
                return char
        for char in valid_characters:
            if char.lower() in lowered or lowered in char.lower():
                return char

    return cleaned or None


def _clean_expression(value: str) -> str:
    cleaned = strip_quotes(value.lower())
    cleaned = _EXPRESSION_PREFIX_RE.sub('', cleaned)
    cleaned = _SPRITE_PREFIX_RE.sub('', cleaned)
    cleaned = _IMAGE_EXT_RE.sub('', cleaned)
    return re.sub(r"[\s-]+", '_', cleaned.strip())


def normalize_expression(value: Any, valid_expressions: Sequence[str] = ()) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None

    cleaned = _clean_expression(value)
    canonical = EXPRESSION_LOOKUP.get(cleaned, cleaned)

    if valid_expressions and canonical:
        return match_expression(canonical, valid_expressions)
    return canonical or None


def _clean_token(value: str) -> str:
    return re.sub(r"[\s-]+", '_', strip_quotes(value.lower()))


def normalize_position(value: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    token = _clean_token(value)
    if token in POSITION_LOOKUP:
        return POSITION_LOOKUP[token]
    if 'left' in token:
        return 'left'
    if 'right' in token:
        return 'right'
    # Unrecognized positions default to center
    return 'center'


def normalize_action(value: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    token = _clean_token(value)
    if token in ACTION_LOOKUP:
        return ACTION_LOOKUP[token]
    if 'enter' in token or 'appear' in token:
        return 'enters'
    if 'exit' in token or 'leave' in token:
        return 'exits'
    if 'speak' in token or 'talk' in token or 'say' in token:
        return 'speaks'
    return None


# =============================================================================
# Choice values
# =============================================================================

def _strip_label_once(label: str) -> str:
    cleaned = _LIST_MARKER_RE.sub('', strip_quotes(label), count=1)
    return strip_quotes(_LEADING_EMOJI_RE.sub('', cleaned, count=1))


def _until_stable(value: str, step) -> str:
    while True:
        updated = step(value)
        if updated == value:
            return value
        value = updated


def normalize_choice_label(label: Any) -> str:
    if not label or not isinstance(label, str):
        return ''
    # quotes can wrap the text after a list marker: 1. "Go home"
    cleaned = _until_stable(label, _strip_label_once)
    if len(cleaned) > MAX_LABEL_CHARS:
        cleaned = cleaned[:MAX_LABEL_CHARS - 3] + '...'
    return cleaned


def normalize_choice_prompt(prompt: Any) -> str:
    if not prompt or not isinstance(prompt, str):
        return ''
    return _until_stable(prompt, lambda p: _EMPHASIS_RE.sub('', strip_quotes(p)).strip())


# =============================================================================
# Driver
# =============================================================================

def _apply(obj: Dict[str, Any], key: str, fn, result: ValueResult, label: str, quiet: bool = False) -> None:
    original = obj.get(key)
    if not original:
        return
    updated = fn(original)
    if updated == original:
        return
    obj[key] = updated
    if quiet:
        result.fixes.append(label)
    else:
        result.fixes.append(f'{label}: "{original}" -> "{updated}"')


def normalize_values(canonical: Mapping[str, Any], options: Any = None) -> ValueResult:
    """Normalize every value of a canonical result.

    ``options`` may be a ``LintOptions`` or a mapping with ``valid_expressions``,
    ``valid_backgrounds`` and ``valid_characters``.
    """
    opts = LintOptions.coerce(options)
    valid_expressions = opts.valid_expressions
    valid_backgrounds = opts.valid_backgrounds
    valid_characters = opts.valid_characters

    result = ValueResult(normalized=copy.deepcopy(dict(canonical or {})))
    normalized = result.normalized
    normalized.setdefault('scene', None)
    normalized.setdefault('characters', [])
    normalized.setdefault('choices', [])

    scene = normalized['scene']
    if scene:
        _apply(scene, 'background', lambda v: normalize_background(v, valid_backgrounds), result, 'Background')
        _apply(scene, 'music', normalize_audio, result, 'Music')
        _apply(scene, 'sfx', normalize_audio, result, 'SFX')

    for char in normalized['characters']:
        _apply(char, 'name', lambda v: normalize_character_name(v, valid_characters), result, 'Name')
        _apply(char, 'expression', lambda v: normalize_expression(v, valid_expressions), result, 'Expression')
        _apply(char, 'position', normalize_position, result, 'Position')
        _apply(char, 'action', normalize_action, result, 'Action')

    characters, duplicates = dedupe_characters([c for c in normalized['characters'] if c.get('name')])
    if duplicates:
        result.warnings.append(f"Merged {duplicates} character(s) that resolved to the same name")
    normalized['characters'] = characters

    for choice in normalized['choices']:
        _apply(choice, 'label', normalize_choice_label, result, 'Choice label trimmed', quiet=True)
        _apply(choice, 'prompt', normalize_choice_prompt, result, 'Choice prompt normalized', quiet=True)

    if result.fixes:
        logger.debug(f"Applied {len(result.fixes)} value normalizations")
    return result


# =============================================================================
# Expression utilities
# =============================================================================

def get_expression_synonyms() -> Dict[str, List[str]]:
    return {k: list(v) for k, v in EXPRESSION_SYNONYMS.items()}


def find_canonical_expression(word: str) -> Optional[str]:
    if not word:
        return None
    return EXPRESSION_LOOKUP.get(word.lower())


def is_known_expression(word: str) -> bool:
    if not word or not isinstance(word, str):
        return False
    return re.sub(r"[\s-]", '_', word.lower()) in EXPRESSION_LOOKUP


def edit_distance(a: str, b: str) -> int:
    """Classic Levenshtein distance (insert, delete, substitute)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def suggest_expression(value: str, valid_expressions: Sequence[str] = ()) -> Optional[str]:
    """Closest expression for ``value``: synonym table first, then edit distance <= 3."""
    if not value:
        return None
    token = re.sub(r"[\s-]", '_', value.lower())

    canonical = EXPRESSION_LOOKUP.get(token)
    if canonical:
        for expr in valid_expressions or []:
            lowered = expr.lower()
            if lowered == canonical or EXPRESSION_LOOKUP.get(lowered) == canonical:
                return expr
        return canonical

    best = None
    best_distance = MAX_SUGGEST_DISTANCE + 1
    for expr in valid_expressions or []:
        distance = edit_distance(token, expr.lower())
        if distance < best_distance:
            best_distance = distance
            best = expr
    return best
