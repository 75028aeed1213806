"""Candidate extraction: find the JSON-like spans in a model response.

Every pattern in ``EXTRACTION_PATTERNS`` runs against the preprocessed text;
priorities only rank the resulting candidates, they never stop a pattern from
running. Selection prefers the highest priority, then the highest confidence,
among candidates that parse and look like scene data.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Pattern, Tuple

import yaml

from core.lookups import FIELD_ALIASES, SCENE_ENVELOPE_KEYS
from core.models import Candidate, ExtractionResult
from core.preprocess import preprocess
from core.scoring import candidate_confidence, invalid_candidate_confidence
from core.shapes import is_array, is_object

logger = logging.getLogger(__name__)

# (raw span, full matched text)
Span = Tuple[str, str]


@dataclass(frozen=True)
class ExtractionPattern:
    name: str
    priority: int
    description: str
    regex: Optional[Pattern[str]] = None
    scanner: Optional[Callable[[str], Iterator[Span]]] = None

    def spans(self, text: str) -> Iterator[Span]:
        if self.scanner is not None:
            yield from self.scanner(text)
            return
        for match in self.regex.finditer(text):
            yield (match.group(1) or '', match.group(0))


# =============================================================================
# Brace scanning
# =============================================================================

def find_matching_brace(text: str, start: int) -> Optional[int]:
    """Index of the ``}`` balancing the ``{`` at ``start``, skipping string literals."""
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == '\\':
            if in_string:
                escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == '{':
            depth += 1
        elif ch == '}':
            depth -= 1
            if depth == 0:
                return i
    return None


def iter_balanced_objects(text: str, start: int = 0) -> Iterator[Tuple[int, int]]:
    """Yield ``(start, end)`` spans of balanced ``{...}`` objects.

    A span that parses as JSON is skipped over as a whole; otherwise scanning
    resumes just inside it, so a valid object nested in (or swallowed by) a
    broken one is still found.
    """
    pos = text.find('{', start)
    while pos != -1:
        end = find_matching_brace(text, pos)
        if end is None:
            pos = text.find('{', pos + 1)
            continue
        yield pos, end + 1
        _, error = try_parse_json(text[pos:end + 1])
        pos = text.find('{', end + 1 if error is None else pos + 1)


def _scan_inline_objects(text: str) -> Iterator[Span]:
    for start, end in iter_balanced_objects(text):
        span = text[start:end]
        yield span, span


_INTRO_OPENER_RE = re.compile(r"here'?s|here is|the|scene", re.IGNORECASE)
_INTRO_TOPIC_RE = re.compile(r"json|data|scene", re.IGNORECASE)
INTRO_WINDOW = 200


def prose_intro_start(text: str, brace: int) -> Optional[int]:
    """Start offset of an introduction line ("Here's the scene data:") ending at ``brace``.

    Only the line before the brace is examined, capped at ``INTRO_WINDOW``
    characters, so the cost per brace is bounded.
    """
    base = max(0, brace - 2 * INTRO_WINDOW)
    before = text[base:brace]
    head = before.rstrip()
    if head.endswith(':'):
        head = head[:-1]
    elif '\n' not in before[len(head):]:
        return None
    line_start = max(head.rfind('\n') + 1, len(head) - INTRO_WINDOW)
    line = head[line_start:]
    opener = _INTRO_OPENER_RE.search(line)
    if not opener or not _INTRO_TOPIC_RE.search(line, opener.end()):
        return None
    return base + line_start + opener.start()


def _scan_json_after_prose(text: str) -> Iterator[Span]:
    pos = 0
    while True:
        brace = text.find('{', pos)
        if brace < 0:
            return
        start = prose_intro_start(text, brace)
        end = find_matching_brace(text, brace) if start is not None else None
        if end is None:
            pos = brace + 1
            continue
        yield text[brace:end + 1], text[start:end + 1]
        pos = end + 1


_FUNCTION_CALL_RE = re.compile(
    r'"name"\s*:\s*"(?:update_scene|set_scene|vn_scene)"[\s\S]*?"arguments"\s*:\s*',
    re.IGNORECASE,
)


def _scan_function_call(text: str) -> Iterator[Span]:
    for match in _FUNCTION_CALL_RE.finditer(text):
        start = match.end()
        if start >= len(text):
            continue
        if text[start] == '{':
            end = find_matching_brace(text, start)
            if end is not None:
                yield text[start:end + 1], text[match.start():end + 1]
        elif text[start] == '"':
            # Arguments serialized as a JSON string
            try:
                value, end = json.JSONDecoder().raw_decode(text, start)
            except ValueError:
                continue
            if isinstance(value, str):
                yield value, text[match.start():end]


_YAML_BLOCK_RE = re.compile(r"```ya?ml\s*([\s\S]*?)```", re.IGNORECASE)


def _scan_yaml_block(text: str) -> Iterator[Span]:
    for match in _YAML_BLOCK_RE.finditer(text):
        body = match.group(1)
        try:
            data = yaml.safe_load(body)
        except yaml.YAMLError as exc:
            logger.debug(f"YAML block skipped: {exc}")
            continue
        if not isinstance(data, dict):
            continue
        yield json.dumps(data, ensure_ascii=False, default=str), match.group(0)


def _rx(pattern: str, flags: int = re.IGNORECASE) -> Pattern[str]:
    return re.compile(pattern, flags)


# =============================================================================
# Pattern table (ordered by priority)
# =============================================================================

EXTRACTION_PATTERNS: Tuple[ExtractionPattern, ...] = (
    # Explicit scene tags
    ExtractionPattern('vn-scene-block', 10, 'Standard ```vn-scene block',
                      regex=_rx(r"```vn-scene\s*([\s\S]*?)```")),
    ExtractionPattern('vn-xml-tag', 10, 'XML-style <vn-scene> tags',
                      regex=_rx(r"<vn-scene[^>]*>([\s\S]*?)</vn-scene>")),
    ExtractionPattern('vn-bracket-tag', 10, 'Bracket [VN-SCENE] tags',
                      regex=_rx(r"\[VN-SCENE\]([\s\S]*?)\[/VN-SCENE\]")),

    # JSON fences with a scene hint
    ExtractionPattern('json-vn-comment', 8, 'JSON block with vn-scene comment',
                      regex=_rx(r"```json\s*(?://\s*vn-scene|/\*\s*vn-scene\s*\*/)\s*([\s\S]*?)```")),
    ExtractionPattern('json-scene-comment', 8, 'JSON block with scene comment',
                      regex=_rx(r"```json\s*(?://\s*scene|/\*\s*scene\s*\*/)\s*([\s\S]*?)```")),

    ExtractionPattern('function-call', 7, 'Function-call arguments for a scene tool',
                      scanner=_scan_function_call),

    # Generic fences
    ExtractionPattern('json-block', 6, 'Standard ```json block',
                      regex=_rx(r"```json\s*([\s\S]*?)```")),
    ExtractionPattern('json-block-no-lang', 5, 'Code block with JSON object (no language tag)',
                      regex=_rx(r"```\s*(\{[\s\S]*?\})\s*```")),

    # Wrong language tags
    ExtractionPattern('javascript-block', 4, 'JavaScript block containing JSON',
                      regex=_rx(r"```(?:javascript|js)\s*(\{[\s\S]*?\})\s*```")),
    ExtractionPattern('typescript-block', 4, 'TypeScript block containing JSON',
                      regex=_rx(r"```(?:typescript|ts)\s*(\{[\s\S]*?\})\s*```")),
    ExtractionPattern('text-block', 4, 'Text block containing JSON',
                      regex=_rx(r"```(?:text|txt|plain)\s*(\{[\s\S]*?\})\s*```")),
    ExtractionPattern('yaml-block', 4, 'YAML block converted to JSON',
                      scanner=_scan_yaml_block),

    # Malformed fences
    ExtractionPattern('unclosed-json-block', 3, 'Unclosed code block (truncated response)',
                      regex=_rx(r"```(?:json|vn-scene)?\s*(\{[\s\S]*?)\Z")),
    ExtractionPattern('extra-backticks', 3, 'Extra backticks (4+)',
                      regex=_rx(r"`{4,}(?:json|vn-scene)?\s*([\s\S]*?)`{4,}")),
    ExtractionPattern('double-fence', 3, 'Double fence',
                      regex=_rx(r"```(?:json)?\s*```(?:json)?\s*(\{[\s\S]*?\})\s*```(?:\s*```)?")),

    # Unfenced JSON
    ExtractionPattern('raw-json-full', 2, 'Response is just JSON',
                      regex=_rx(r"\A\s*(\{[\s\S]*\})\s*\Z", 0)),
    ExtractionPattern('json-after-prose', 2, 'JSON after prose introduction',
                      scanner=_scan_json_after_prose),

    # Last resort
    ExtractionPattern('inline-json', 1, 'Any balanced JSON object in text',
                      scanner=_scan_inline_objects),
)


# =============================================================================
# Validation
# =============================================================================

def looks_like_scene(value: Any) -> bool:
    """True for an object carrying any scene, character or choice field."""
    if not is_object(value):
        return False
    if is_object(value.get('scene')) or 'background' in value:
        return True
    for alias in FIELD_ALIASES['characters'] + FIELD_ALIASES['choices']:
        if is_array(value.get(alias)):
            return True
    for key in SCENE_ENVELOPE_KEYS:
        if is_object(value.get(key)) and looks_like_scene(value[key]):
            return True
    return False


def try_parse_json(raw: str) -> Tuple[Any, Optional[str]]:
    try:
        return json.loads(raw), None
    except (ValueError, RecursionError) as exc:
        return None, str(exc)


# =============================================================================
# Extraction
# =============================================================================

def _collect_candidates(processed: str) -> List[Candidate]:
    candidates: List[Candidate] = []
    seen = set()
    for pattern in EXTRACTION_PATTERNS:
        for raw, full_match in pattern.spans(processed):
            raw = raw.strip()
            if not raw or raw in seen:
                continue
            seen.add(raw)
            parsed, error = try_parse_json(raw)
            is_valid = error is None and looks_like_scene(parsed)
            candidates.append(Candidate(
                raw=raw,
                full_match=full_match,
                source_pattern=pattern.name,
                priority=pattern.priority,
                confidence=candidate_confidence(pattern.priority, is_valid, raw),
                is_valid=is_valid,
                parse_error=error,
                parsed_value=parsed if error is None else None,
            ))
    return candidates


def extract_all_candidates(text: str) -> List[Candidate]:
    """All candidates in discovery order (not ranked)."""
    if not text or not isinstance(text, str):
        return []
    return _collect_candidates(preprocess(text))


def rank_candidates(candidates: List[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: (-c.priority, -c.confidence))


def extract_best(text: str) -> ExtractionResult:
    result = ExtractionResult(narrative=text if isinstance(text, str) else '')
    if not text or not isinstance(text, str):
        return result

    processed = preprocess(text)
    if processed != text:
        result.fixes.append('Preprocessed response (stripped tags/entities)')
    result.narrative = processed

    candidates = _collect_candidates(processed)
    result.attempts = len(candidates)
    if not candidates:
        logger.debug("No JSON candidates found")
        return result

    ranked = rank_candidates(candidates)
    chosen = next((c for c in ranked if c.is_valid), None)
    if chosen is not None:
        result.raw_json = chosen.raw
        result.source = chosen.source_pattern
        result.confidence = chosen.confidence
        logger.debug(f"Extracted from {chosen.source_pattern} (confidence: {chosen.confidence})")
    else:
        chosen = ranked[0]
        result.raw_json = chosen.raw
        result.source = f"{chosen.source_pattern}-invalid"
        result.confidence = invalid_candidate_confidence(chosen.confidence)
        result.fixes.append('Using invalid JSON candidate for repair attempt')
        logger.debug(f"No valid candidate; passing {chosen.source_pattern} to repair")

    result.narrative = processed.replace(chosen.full_match, '', 1).strip()
    return result
