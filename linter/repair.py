"""JSON syntax repair for model output.

Cheap, named text passes fix the mistakes we can describe precisely; whatever
is still broken afterwards goes through ``json_repair``.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

import json_repair

logger = logging.getLogger(__name__)


@dataclass
class RepairResult:
    parsed: Any = None
    fixes: List[str] = field(default_factory=list)
    error: Optional[str] = None


def _map_outside_strings(text: str, fn: Callable[[str], str]) -> str:
    """Apply ``fn`` to the parts of ``text`` that are not inside quoted strings."""
    out: List[str] = []
    buf: List[str] = []
    quote = None
    escape = False
    for ch in text:
        if quote:
            buf.append(ch)
            if escape:
                escape = False
            elif ch == '\\':
                escape = True
            elif ch == quote:
                out.append(''.join(buf))
                buf = []
                quote = None
            continue
        if ch in ('"', "'"):
            out.append(fn(''.join(buf)))
            buf = [ch]
            quote = ch
            continue
        buf.append(ch)
    # An unterminated string is left as-is
    out.append(''.join(buf) if quote else fn(''.join(buf)))
    return ''.join(out)


def _strip_comments(text: str) -> str:
    out: List[str] = []
    i = 0
    quote = None
    n = len(text)
    while i < n:
        ch = text[i]
        if quote:
            out.append(ch)
            if ch == '\\' and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in ('"', "'"):
            quote = ch
            out.append(ch)
            i += 1
            continue
        if text.startswith('//', i) or ch == '#':
            end = text.find('\n', i)
            i = n if end == -1 else end
            continue
        if text.startswith('/*', i):
            end = text.find('*/', i + 2)
            i = n if end == -1 else end + 2
            continue
        out.append(ch)
        i += 1
    return ''.join(out)


def fix_invisibles(text: str) -> str:
    return re.sub(r"[\u200B-\u200D\uFEFF\u00AD]", '', text)


def fix_control_characters(text: str) -> str:
    return re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", '', text)


def fix_odd_spaces(text: str) -> str:
    return re.sub(r"[\u00A0\u2000-\u200A\u202F\u205F\u3000]", ' ', text)


def fix_smart_quotes(text: str) -> str:
    text = re.sub(r"[\u201C\u201D\u201E\u201F\u2033]", '"', text)
    return re.sub(r"[\u2018\u2019\u201A\u201B\u2032]", "'", text)


def fix_comments(text: str) -> str:
    return _strip_comments(text)


def fix_python_literals(text: str) -> str:
    def _sub(part: str) -> str:
        part = re.sub(r"\bTrue\b", 'true', part)
        part = re.sub(r"\bFalse\b", 'false', part)
        return re.sub(r"\bNone\b", 'null', part)
    return _map_outside_strings(text, _sub)


def fix_undefined(text: str) -> str:
    return _map_outside_strings(text, lambda part: re.sub(r"\bundefined\b", 'null', part))


def fix_nan_infinity(text: str) -> str:
    return _map_outside_strings(text, lambda part: re.sub(r"-?\b(?:NaN|Infinity)\b", 'null', part))


def fix_trailing_commas(text: str) -> str:
    return _map_outside_strings(text, lambda part: re.sub(r",(\s*[}\]])", r"\1", part))


SYNTAX_FIXERS: Tuple[Tuple[str, Callable[[str], str]], ...] = (
    ('BomAndInvisibles', fix_invisibles),
    ('ControlCharacters', fix_control_characters),
    ('NbspAndWeirdSpaces', fix_odd_spaces),
    ('SmartQuotes', fix_smart_quotes),
    ('Comments', fix_comments),
    ('PythonLiterals', fix_python_literals),
    ('UndefinedNull', fix_undefined),
    ('NaNInfinity', fix_nan_infinity),
    ('TrailingCommas', fix_trailing_commas),
)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Invalid JSON constant: {name}")


def _loads(text: str) -> Tuple[Any, Optional[str]]:
    try:
        value = json.loads(text, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as exc:
        return None, str(exc)
    if value is None:
        return None, 'Parsed value is null'
    return value, None


def repair_syntax(raw: str) -> RepairResult:
    result = RepairResult()
    if not raw or not isinstance(raw, str):
        result.error = 'Empty or invalid input'
        return result

    parsed, error = _loads(raw)
    if error is None:
        result.parsed = parsed
        return result

    current = raw.strip()
    for name, fixer in SYNTAX_FIXERS:
        fixed = fixer(current)
        if fixed != current:
            result.fixes.append(name)
            current = fixed

    parsed, error = _loads(current)
    if error is None:
        result.parsed = parsed
        logger.debug(f"Applied {len(result.fixes)} syntax fixes: {', '.join(result.fixes)}")
        return result

    try:
        repaired = json_repair.repair_json(current, return_objects=True)
    except Exception as exc:
        logger.debug(f"json_repair failed: {exc}")
        repaired = None

    if isinstance(repaired, (dict, list)) and repaired:
        result.parsed = repaired
        result.fixes.append('JsonRepair')
        logger.debug(f"Applied {len(result.fixes)} syntax fixes: {', '.join(result.fixes)}")
        return result

    result.error = error
    return result
