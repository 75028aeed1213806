"""Fallback extraction: recover scene data from plain narrative.

Used only when no JSON survives extraction and repair. Each detector is a
heuristic over the prose; the combined result is scored so the orchestrator
can reject weak guesses.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from core.keywords import cue_alternation, detect_emotion, emotion_for_word, match_expression
from core.lookups import EMOTION_KEYWORDS, LOCATION_PATTERNS
from core.models import LintOptions
from core.scoring import fallback_confidence
from core.shapes import empty_canonical, empty_character, empty_scene

logger = logging.getLogger(__name__)

MIN_CHOICE_CHARS = 2
MAX_CHOICE_CHARS = 200
MIN_CHOICES = 2


@dataclass
class FallbackResult:
    scene: Optional[Dict[str, Any]] = None
    confidence: int = 0
    extractions: List[str] = field(default_factory=list)


# =============================================================================
# Background
# =============================================================================

_EXPLICIT_LOCATION_RE = re.compile(
    r"(?:in the|at the|inside the|outside the|enters? the|arrives? at)\s+([a-z]+(?:\s+[a-z]+)?)",
    re.IGNORECASE,
)


def extract_background(text: str, valid_backgrounds: Sequence[str] = ()) -> Tuple[Optional[str], int]:
    """Return ``(background, confidence)``; confidence is 70 for a vocabulary hit, 50 for a table hit."""
    background = None
    confidence = 0

    match = _EXPLICIT_LOCATION_RE.search(text)
    if match and valid_backgrounds:
        location = match.group(1).lower()
        for bg in valid_backgrounds:
            lowered = bg.lower()
            if location in lowered or lowered in location:
                background = bg
                confidence = 70
                break

    if background is None:
        for pattern, name, _suffix in LOCATION_PATTERNS:
            if name and pattern.search(text):
                background = name
                confidence = 50
                break

    if background is not None:
        for pattern, _name, suffix in LOCATION_PATTERNS:
            if suffix and pattern.search(text) and background + suffix in valid_backgrounds:
                background = background + suffix

    return background, confidence


# =============================================================================
# Characters
# =============================================================================

_ACTION_PATTERNS = (
    (re.compile(r"\*?\s*(\w+)\s+(?:walks? in|enters?|arrives?|appears?|comes? in)\s*\*?", re.IGNORECASE), 'enters'),
    (re.compile(r"\*?\s*(?:door opens?|footsteps).+?(\w+)\s*\*?", re.IGNORECASE), 'enters'),
    (re.compile(r"\*?\s*(\w+)\s+(?:walks? out|leaves?|exits?|departs?|goes?|walks? away)\s*\*?", re.IGNORECASE), 'exits'),
    (re.compile(r"\*?\s*(\w+)\s+(?:storms? out|runs? off|disappears?)\s*\*?", re.IGNORECASE), 'exits'),
    (re.compile(r"\*?\s*(\w+)\s+(?:moves?|steps?|walks?|shifts?)\s+(?:to the\s+)?(left|right|center)\s*\*?", re.IGNORECASE), 'moves'),
)

_DIALOGUE_RE = re.compile(
    r"^\s*\*?([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\*?:\s*[\"\u201C\u201D]?(.+?)[\"\u201C\u201D]?\s*$",
    re.MULTILINE,
)
_STAGE_DIRECTION_RE = re.compile(r"\*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s+([^*]+)\*")
_CUE_AFTER_NAME_RE = re.compile(rf"\b([A-Z][a-z]+)\s+({cue_alternation()})\b")

# Capitalized words that start sentences without naming anyone
_NOT_NAMES = frozenset({
    'He', 'She', 'They', 'It', 'We', 'You', 'I', 'His', 'Her', 'Their', 'Its',
    'The', 'A', 'An', 'This', 'That', 'These', 'Those', 'Then', 'There', 'Here',
    'Someone', 'Everyone', 'Nobody', 'Somebody', 'Everybody', 'Suddenly', 'Finally',
    'And', 'But', 'So', 'When', 'While', 'As', 'After', 'Before', 'With',
})


def find_character_expression(text: str, name: str, valid_expressions: Sequence[str] = ()) -> Optional[str]:
    """Expression cue directly after ``name`` ("Alice smiles", "Alice, looking nervously, ...")."""
    escaped = re.escape(name)
    patterns = (
        re.compile(rf"{escaped}(?:[,\s]+(?:looking|appearing|seeming))?[,\s]+(\w+)", re.IGNORECASE),
        re.compile(rf"{escaped}[\s,]+(smiles|grins|frowns|sighs|laughs|cries|blushes)", re.IGNORECASE),
    )
    for pattern in patterns:
        match = pattern.search(text)
        if not match:
            continue
        emotion = emotion_for_word(match.group(1))
        if emotion:
            return match_expression(emotion, valid_expressions)
    return None


def find_character_action(text: str, name: str) -> Optional[Tuple[str, Optional[str]]]:
    """Return ``(action, position)`` for the first stage direction naming ``name``."""
    lowered = name.lower()
    for pattern, action in _ACTION_PATTERNS:
        for match in pattern.finditer(text):
            if (match.group(1) or '').lower() != lowered:
                continue
            position = None
            if action == 'moves' and match.lastindex and match.lastindex >= 2:
                position = match.group(2).lower()
            return action, position
    return None


def _character(name: str, expression: Optional[str] = None, action: Optional[str] = None,
               position: Optional[str] = None) -> Dict[str, Any]:
    char = empty_character(name)
    char['expression'] = expression
    char['action'] = action
    char['position'] = position
    return char


def extract_characters(text: str, valid_characters: Sequence[str] = (),
                       valid_expressions: Sequence[str] = ()) -> List[Dict[str, Any]]:
    characters: List[Dict[str, Any]] = []
    seen: Set[str] = set()

    def _add(char: Dict[str, Any]) -> None:
        key = char['name'].lower()
        if key not in seen:
            seen.add(key)
            characters.append(char)

    # Known names mentioned anywhere
    for name in valid_characters:
        if name.lower() in seen:
            continue
        if not re.search(rf"\b{re.escape(name)}\b", text, re.IGNORECASE):
            continue
        found = find_character_action(text, name)
        action, position = found if found else (None, None)
        _add(_character(name, find_character_expression(text, name, valid_expressions), action, position))

    # "Name: dialogue" lines
    for match in _DIALOGUE_RE.finditer(text):
        name = match.group(1).strip()
        if name in _NOT_NAMES:
            continue
        _add(_character(name, detect_emotion(match.group(2), valid_expressions), 'speaks'))

    # *Name does something*
    for match in _STAGE_DIRECTION_RE.finditer(text):
        name = match.group(1).strip()
        if name in _NOT_NAMES:
            continue
        _add(_character(name, detect_emotion(match.group(2), valid_expressions)))

    # "Name smiles" with no vocabulary to go on
    for match in _CUE_AFTER_NAME_RE.finditer(text):
        name = match.group(1)
        if name in _NOT_NAMES or name.lower() in seen:
            continue
        emotion = emotion_for_word(match.group(2))
        found = find_character_action(text, name)
        action, position = found if found else (None, None)
        _add(_character(name, match_expression(emotion, valid_expressions), action, position))

    return characters


# =============================================================================
# Choices
# =============================================================================

_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s*(.+?)\s*$", re.MULTILINE)
_BULLETS_AFTER_QUESTION_RE = re.compile(r"\?[^\n]*\n((?:[ \t]*[-\u2022][ \t]*.+\n?)+)")
_BULLET_RE = re.compile(r"^[ \t]*[-\u2022][ \t]*(.+?)\s*$", re.MULTILINE)
_LETTERED_RE = re.compile(r"^\s*[A-Da-d][.)]\s*(.+?)\s*$", re.MULTILINE)
_ARROW_RE = re.compile(r"^\s*[\u2192\u25BA]\s*(.+?)\s*$", re.MULTILINE)


def _acceptable(label: str) -> bool:
    return MIN_CHOICE_CHARS < len(label) < MAX_CHOICE_CHARS


def _numbered(text: str) -> List[str]:
    return [m.group(1) for m in _NUMBERED_RE.finditer(text)]


def _bullets_after_question(text: str) -> List[str]:
    section = _BULLETS_AFTER_QUESTION_RE.search(text)
    if not section:
        return []
    return [m.group(1) for m in _BULLET_RE.finditer(section.group(1))]


def _lettered(text: str) -> List[str]:
    return [m.group(1) for m in _LETTERED_RE.finditer(text)]


def _arrows(text: str) -> List[str]:
    return [m.group(1) for m in _ARROW_RE.finditer(text)]


CHOICE_METHODS = (
    ('numbered', _numbered),
    ('bullets', _bullets_after_question),
    ('lettered', _lettered),
    ('arrows', _arrows),
)


def extract_choices(text: str) -> List[Dict[str, str]]:
    """First method yielding at least two acceptable labels wins."""
    for name, method in CHOICE_METHODS:
        labels = [label.strip() for label in method(text)]
        labels = [label for label in labels if _acceptable(label)]
        if len(labels) >= MIN_CHOICES:
            logger.debug(f"Choices found by {name} method: {len(labels)}")
            return [{'label': label, 'prompt': label} for label in labels]
    return []


# =============================================================================
# Entry point
# =============================================================================

def extract_from_narrative(text: str, options: Any = None) -> FallbackResult:
    result = FallbackResult()
    if not text or not isinstance(text, str):
        return result

    opts = LintOptions.coerce(options)
    valid_expressions = opts.valid_expressions
    valid_backgrounds = opts.valid_backgrounds
    valid_characters = opts.valid_characters

    scene = empty_canonical()

    background, _ = extract_background(text, valid_backgrounds)
    if background:
        scene['scene'] = empty_scene()
        scene['scene']['background'] = background
        result.extractions.append(f"Background: {background}")

    characters = extract_characters(text, valid_characters, valid_expressions)
    if characters:
        scene['characters'] = characters
        result.extractions.append(f"Characters: {', '.join(c['name'] for c in characters)}")

    choices = extract_choices(text)
    if choices:
        scene['choices'] = choices
        result.extractions.append(f"Choices: {len(choices)} options found")

    result.confidence = fallback_confidence(scene)
    if scene['scene'] or scene['characters'] or scene['choices']:
        result.scene = scene

    logger.debug(f"Fallback extraction: confidence {result.confidence}%, "
                 f"extractions: {'; '.join(result.extractions)}")
    return result


def get_emotion_keywords() -> Dict[str, List[str]]:
    return {k: list(v) for k, v in EMOTION_KEYWORDS.items()}


def get_location_patterns() -> List[Dict[str, Optional[str]]]:
    return [
        {'pattern': pattern.pattern, 'background': background, 'suffix': suffix}
        for pattern, background, suffix in LOCATION_PATTERNS
    ]
