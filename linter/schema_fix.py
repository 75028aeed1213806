"""Schema structure normalization.

Valid JSON from a model rarely has the exact ``{scene, characters, choices}``
shape. ``SCHEMA_STEPS`` is an ordered chain of small transforms that each look
at the working value and the canonical accumulator, and report what they did.
A step that finds nothing to do returns ``None``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.lookups import (
    FIELD_ALIASES,
    KNOWN_TOP_LEVEL_KEYS,
    SCENE_ENVELOPE_KEYS,
    SINGLE_CHARACTER_KEYS,
)
from core.schema import default_schema
from core.shapes import (
    Shape,
    classify,
    empty_canonical,
    empty_character,
    empty_scene,
    field as field_shape,
    to_text,
)

logger = logging.getLogger(__name__)

SCENE_FIELDS = ('background', 'music', 'sfx')
CHARACTER_FIELDS = ('name', 'expression', 'outfit', 'position', 'action')
CANONICAL_KEYS = ('scene', 'characters', 'choices')

_COMBINED_NAME_RE = re.compile(r"^([^(]+?)(?:\s*\(([^)]+)\))?$")


@dataclass
class StepResult:
    fix: Optional[str] = None
    warning: Optional[str] = None
    data: Any = None


@dataclass
class SchemaResult:
    normalized: Optional[Dict[str, Any]] = None
    fixes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


Step = Callable[[Dict[str, Any], Dict[str, Any]], Optional[StepResult]]


def _summarize(prefix: str, fixes: List[str]) -> str:
    more = '...' if len(fixes) > 3 else ''
    return f"{prefix}: {', '.join(fixes[:3])}{more}"


def _has_canonical_keys(data: Dict[str, Any]) -> bool:
    return any(key in data for key in CANONICAL_KEYS)


# =============================================================================
# Envelopes
# =============================================================================

def unwrap_data_envelope(data, canonical):
    if field_shape(data, 'data') is Shape.OBJECT and not _has_canonical_keys(data):
        return StepResult(fix='Unwrapped data envelope', data=data['data'])
    return None


def unwrap_result_envelope(data, canonical):
    if field_shape(data, 'result') is Shape.OBJECT and not _has_canonical_keys(data):
        return StepResult(fix='Unwrapped result envelope', data=data['result'])
    return None


def unwrap_scene_envelope(data, canonical):
    for key in SCENE_ENVELOPE_KEYS:
        if field_shape(data, key) is Shape.OBJECT:
            return StepResult(fix=f"Unwrapped {key} envelope", data=data[key])
    return None


# =============================================================================
# Scene
# =============================================================================

def find_scene(data, canonical):
    for alias in FIELD_ALIASES['scene']:
        if field_shape(data, alias) is Shape.OBJECT:
            canonical['scene'] = dict(data[alias])
            if alias != 'scene':
                return StepResult(fix=f"Renamed {alias} to scene")
            return None

    canonical['scene'] = {}
    if field_shape(data, 'scene') is Shape.SCALAR:
        canonical['scene']['background'] = data['scene']
        return StepResult(fix='Used scene string as background')
    return None


def rename_scene_fields(data, canonical):
    scene = canonical['scene']
    renamed = []
    for target in SCENE_FIELDS:
        for alias in FIELD_ALIASES[target]:
            if alias not in scene:
                continue
            if alias != target:
                scene[target] = scene.pop(alias)
                renamed.append(f"scene.{alias} -> {target}")
            break
    if renamed:
        return StepResult(fix=f"Normalized scene fields: {', '.join(renamed)}")
    return None


def absorb_flat_scene_fields(data, canonical):
    scene = canonical['scene']
    found = False
    for target in SCENE_FIELDS:
        if scene.get(target) is not None:
            continue
        for alias in FIELD_ALIASES[target]:
            if isinstance(data.get(alias), str):
                scene[target] = data[alias]
                found = True
                break
    if found:
        return StepResult(fix='Collected flat scene fields into scene object')
    return None


# =============================================================================
# Characters
# =============================================================================

def _map_fields(item: Dict[str, Any], targets: Tuple[str, ...], renamed: List[str], kind: str) -> Dict[str, Any]:
    mapped: Dict[str, Any] = {}
    used = set()
    for target in targets:
        for alias in FIELD_ALIASES[target]:
            if alias in item and alias not in used:
                mapped[target] = item[alias]
                used.add(alias)
                if alias != target:
                    renamed.append(f"{kind}.{alias} -> {target}")
                break
    return mapped


def find_characters(data, canonical):
    for alias in FIELD_ALIASES['characters']:
        if field_shape(data, alias) is Shape.ARRAY:
            canonical['characters'] = list(data[alias])
            if alias != 'characters':
                return StepResult(fix=f"Renamed {alias} to characters")
            return None
    for alias in FIELD_ALIASES['characters']:
        if field_shape(data, alias) is Shape.OBJECT:
            # Left bare here; array coercion wraps it later
            canonical['characters'] = dict(data[alias])
            if alias != 'characters':
                return StepResult(fix=f"Renamed {alias} to characters")
            return None
    return None


def rename_character_fields(data, canonical):
    characters = canonical['characters']
    if not isinstance(characters, list) or not characters:
        return None
    renamed: List[str] = []
    result = []
    for i, char in enumerate(characters):
        if classify(char) is not Shape.OBJECT:
            renamed.append(f"characters[{i}] was not an object")
            result.append({'name': to_text(char)} if char is not None else {})
            continue
        result.append(_map_fields(char, CHARACTER_FIELDS, renamed, 'char'))
    canonical['characters'] = result
    if renamed:
        return StepResult(fix=_summarize('Normalized character fields', renamed))
    return None


def _split_combined(char: Any) -> Tuple[Any, bool]:
    if isinstance(char, str):
        match = _COMBINED_NAME_RE.match(char.strip())
        if match and match.group(2):
            return {'name': match.group(1).strip(), 'expression': match.group(2).strip()}, True
        return {'name': char}, False
    name = char.get('name') if isinstance(char, dict) else None
    if isinstance(name, str):
        match = _COMBINED_NAME_RE.match(name.strip())
        if match and match.group(2):
            split = dict(char)
            split['name'] = match.group(1).strip()
            if not split.get('expression'):
                split['expression'] = match.group(2).strip()
            return split, True
    return char, False


def split_combined_characters(data, canonical):
    characters = canonical['characters']
    if not isinstance(characters, list) or not characters:
        return None
    fixed = False
    result = []
    for char in characters:
        char, was_split = _split_combined(char)
        fixed = fixed or was_split
        result.append(char)
    canonical['characters'] = result
    if fixed:
        return StepResult(fix='Split combined name/expression strings')
    return None


def promote_single_character(data, canonical):
    if canonical['characters']:
        return None
    for key in SINGLE_CHARACTER_KEYS:
        if field_shape(data, key) is Shape.OBJECT:
            char = _map_fields(data[key], CHARACTER_FIELDS, [], 'char')
            char, _ = _split_combined(char)
            canonical['characters'] = [char]
            return StepResult(fix=f"Wrapped single {key} object in array")
    return None


# =============================================================================
# Choices
# =============================================================================

def find_choices(data, canonical):
    for alias in FIELD_ALIASES['choices']:
        if field_shape(data, alias) is Shape.ARRAY:
            canonical['choices'] = list(data[alias])
            if alias != 'choices':
                return StepResult(fix=f"Renamed {alias} to choices")
            return None
    for alias in FIELD_ALIASES['choices']:
        if field_shape(data, alias) is Shape.OBJECT:
            canonical['choices'] = dict(data[alias])
            if alias != 'choices':
                return StepResult(fix=f"Renamed {alias} to choices")
            return None
    return None


def _map_choice(choice: Dict[str, Any], renamed: List[str]) -> Dict[str, Any]:
    mapped = _map_fields(choice, ('label', 'prompt'), renamed, 'choice')
    label, prompt = mapped.get('label'), mapped.get('prompt')
    if label not in (None, '') and prompt in (None, ''):
        mapped['prompt'] = label
    elif prompt not in (None, '') and label in (None, ''):
        mapped['label'] = prompt
    return mapped


def rename_choice_fields(data, canonical):
    choices = canonical['choices']
    if not isinstance(choices, list) or not choices:
        return None
    renamed: List[str] = []
    canonical['choices'] = [
        _map_choice(choice, renamed) if classify(choice) is Shape.OBJECT else choice
        for choice in choices
    ]
    if renamed:
        return StepResult(fix=_summarize('Normalized choice fields', renamed))
    return None


def coerce_string_choices(data, canonical):
    choices = canonical['choices']
    if not isinstance(choices, list) or not choices:
        return None
    fixed = False
    result = []
    for choice in choices:
        if classify(choice) is Shape.SCALAR:
            text = to_text(choice)
            result.append({'label': text, 'prompt': text})
            fixed = True
        elif choice is None:
            fixed = True
        else:
            result.append(choice)
    canonical['choices'] = result
    if fixed:
        return StepResult(fix='Converted string choices to objects')
    return None


def split_label_prompt(data, canonical):
    choices = canonical['choices']
    if not isinstance(choices, list) or not choices:
        return None
    fixed = False
    result = []
    for choice in choices:
        label = choice.get('label') if isinstance(choice, dict) else None
        prompt = choice.get('prompt') if isinstance(choice, dict) else None
        if isinstance(label, str) and ':' in label and (not prompt or prompt == label):
            head, _, tail = label.partition(':')
            result.append({'label': head.strip(), 'prompt': tail.strip() or head.strip()})
            fixed = True
        else:
            result.append(choice)
    canonical['choices'] = result
    if fixed:
        return StepResult(fix='Split choice label:prompt format')
    return None


# =============================================================================
# Cleanup
# =============================================================================

def report_unknown_fields(data, canonical):
    unknown = [key for key in data if key not in KNOWN_TOP_LEVEL_KEYS]
    if unknown:
        return StepResult(warning=f"Ignored unknown fields: {', '.join(unknown)}")
    return None


def _keyed_by_name(obj: Dict[str, Any]) -> bool:
    has_name = any(alias in obj for alias in FIELD_ALIASES['name'])
    return bool(obj) and not has_name and all(isinstance(v, dict) for v in obj.values())


def ensure_array_types(data, canonical):
    fixed = False
    characters = canonical['characters']
    if isinstance(characters, dict):
        if _keyed_by_name(characters):
            items = [{'name': key, **value} for key, value in characters.items()]
        else:
            items = [characters]
        canonical['characters'] = [
            _split_combined(_map_fields(item, CHARACTER_FIELDS, [], 'char'))[0] for item in items
        ]
        fixed = True
    choices = canonical['choices']
    if isinstance(choices, dict):
        canonical['choices'] = [_map_choice(choices, [])]
        fixed = True
    if fixed:
        return StepResult(fix='Wrapped non-arrays in arrays')
    return None


def dedupe_characters(characters: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
    """Keep the first character for each case-insensitive name."""
    seen = set()
    kept = []
    for char in characters:
        key = (char.get('name') or '').strip().lower()
        if key in seen:
            continue
        seen.add(key)
        kept.append(char)
    return kept, len(characters) - len(kept)


def ensure_string_types(data, canonical):
    converted = False
    discarded = 0
    warnings = []

    def _text(value: Any) -> Optional[str]:
        nonlocal converted, discarded
        if value is None or isinstance(value, str):
            return value
        text = to_text(value)
        if text is None:
            discarded += 1
        else:
            converted = True
        return text

    scene = empty_scene()
    for key in SCENE_FIELDS:
        scene[key] = _text((canonical['scene'] or {}).get(key))
    canonical['scene'] = scene if any(v is not None for v in scene.values()) else None

    characters = []
    dropped = 0
    for char in canonical['characters'] or []:
        if not isinstance(char, dict):
            continue
        typed = empty_character()
        for key in CHARACTER_FIELDS:
            typed[key] = _text(char.get(key))
        if not typed['name'] or not typed['name'].strip():
            dropped += 1
            continue
        characters.append(typed)
    characters, duplicates = dedupe_characters(characters)
    canonical['characters'] = characters
    if dropped:
        warnings.append(f"Dropped {dropped} character(s) without a name")
    if duplicates:
        warnings.append(f"Dropped {duplicates} duplicate character(s)")

    choices = []
    empty = 0
    for choice in canonical['choices'] or []:
        if not isinstance(choice, dict):
            continue
        label = _text(choice.get('label')) or ''
        prompt = _text(choice.get('prompt')) or ''
        if not label and not prompt:
            empty += 1
            continue
        choices.append({'label': label, 'prompt': prompt})
    canonical['choices'] = choices
    if empty:
        warnings.append(f"Dropped {empty} empty choice(s)")
    if discarded:
        warnings.append(f"Discarded {discarded} object/array field value(s)")

    return StepResult(
        fix='Converted non-strings to strings' if converted else None,
        warning='; '.join(warnings) or None,
    )


SCHEMA_STEPS: Tuple[Tuple[str, Step], ...] = (
    ('unwrap_data_envelope', unwrap_data_envelope),
    ('unwrap_result_envelope', unwrap_result_envelope),
    ('unwrap_scene_envelope', unwrap_scene_envelope),
    ('find_scene', find_scene),
    ('rename_scene_fields', rename_scene_fields),
    ('absorb_flat_scene_fields', absorb_flat_scene_fields),
    ('find_characters', find_characters),
    ('rename_character_fields', rename_character_fields),
    ('split_combined_characters', split_combined_characters),
    ('promote_single_character', promote_single_character),
    ('find_choices', find_choices),
    ('rename_choice_fields', rename_choice_fields),
    ('coerce_string_choices', coerce_string_choices),
    ('split_label_prompt', split_label_prompt),
    ('report_unknown_fields', report_unknown_fields),
    ('ensure_array_types', ensure_array_types),
    ('ensure_string_types', ensure_string_types),
)


def normalize_schema(parsed: Any, steps: Tuple[Tuple[str, Step], ...] = SCHEMA_STEPS) -> SchemaResult:
    result = SchemaResult()

    shape = classify(parsed)
    if shape is Shape.ARRAY and len(parsed) == 1 and classify(parsed[0]) is Shape.OBJECT:
        parsed = parsed[0]
        result.fixes.append('Unwrapped single-element array')
    elif shape is not Shape.OBJECT:
        result.warnings.append('Input is not an object')
        return result

    canonical = empty_canonical()
    canonical['scene'] = {}
    current: Dict[str, Any] = dict(parsed)

    for name, step in steps:
        outcome = step(current, canonical)
        if outcome is None:
            continue
        if outcome.fix:
            result.fixes.append(outcome.fix)
        if outcome.warning:
            result.warnings.append(outcome.warning)
        if outcome.data is not None:
            current = dict(outcome.data)

    if steps is not SCHEMA_STEPS:
        # Custom chains may skip the final typing step
        ensure_string_types(current, canonical)

    result.normalized = canonical
    if result.fixes:
        logger.debug(f"Applied {len(result.fixes)} schema fixes: {', '.join(result.fixes)}")
    return result


# =============================================================================
# Validation
# =============================================================================

def validate_normalized(canonical: Any) -> Tuple[bool, List[str]]:
    """Check a canonical result against ``config/scene_schema.json``."""
    try:
        schema = default_schema()
    except FileNotFoundError as exc:
        logger.warning(f"Scene schema unavailable, skipping validation: {exc}")
        return True, []
    errors = schema.errors(canonical)
    return not errors, errors
