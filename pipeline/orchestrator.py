"""Main linting pipeline."""
from __future__ import annotations

import json
import logging
import re
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.config import Config
from core.models import LintOptions, LintResult
from core.scoring import clamp, pipeline_confidence
from linter.extract import extract_all_candidates, extract_best
from linter.fallback import extract_from_narrative
from linter.repair import repair_syntax
from linter.schema_fix import normalize_schema, validate_normalized
from linter.values import normalize_values

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = 'fallback-text'
FALLBACK_MIN_CONFIDENCE = 30

_SCENE_MARKERS = (
    re.compile(r"```(?:json|vn-scene)", re.IGNORECASE),
    re.compile(r"\[VN-SCENE\]", re.IGNORECASE),
    re.compile(r"<vn-scene>", re.IGNORECASE),
    re.compile(r'"scene"\s*:'),
    re.compile(r'"characters"\s*:'),
    re.compile(r'"choices"\s*:'),
)


def _try_fallback(response: str, result: LintResult, options: LintOptions) -> LintResult:
    logger.debug("Running fallback text extraction")
    fallback = extract_from_narrative(response, options)

    if fallback.scene and fallback.confidence > FALLBACK_MIN_CONFIDENCE:
        result.scene = fallback.scene
        result.source = FALLBACK_SOURCE
        result.confidence = fallback.confidence
        result.fixes.append('Used fallback text extraction')
        result.fixes.extend(fallback.extractions)
        result.warnings.append('Scene data extracted from narrative (no JSON found)')
    else:
        result.warnings.append('Fallback extraction failed or low confidence')
    return _finish(result)


def _finish(result: LintResult) -> LintResult:
    if result.scene is None:
        result.confidence = 0
    result.confidence = clamp(result.confidence)
    logger.info(
        f"Lint finished: source={result.source}, fixes={len(result.fixes)}, "
        f"confidence={result.confidence}%"
    )
    return result


def lint_scene_response(response: Any, options: Any = None) -> LintResult:
    """Run extraction, repair, schema and value normalization over one response.

    Never raises for malformed content; problems are reported in ``warnings``
    and the result degrades to ``scene=None``.
    """
    opts = LintOptions.coerce(options)
    is_text = isinstance(response, str)
    result = LintResult(narrative=response if is_text else '')
    result.diagnostics['original_length'] = len(response) if is_text else 0

    if not response or not is_text:
        result.warnings.append('Empty or invalid response')
        return _finish(result)

    # Phase 1: candidate extraction
    logger.debug("Phase 1: extracting JSON")
    extraction = extract_best(response)
    result.diagnostics['extraction_attempts'] = extraction.attempts
    result.narrative = extraction.narrative

    if not extraction.raw_json:
        if opts.allow_fallback:
            return _try_fallback(response, result, opts)
        result.warnings.append('No JSON block found in response')
        return _finish(result)

    result.source = extraction.source
    result.confidence = extraction.confidence
    result.fixes.extend(extraction.fixes)

    # Phase 2: syntax repair
    logger.debug("Phase 2: fixing JSON syntax")
    syntax = repair_syntax(extraction.raw_json)
    result.diagnostics['syntax_fixes_applied'] = len(syntax.fixes)
    result.fixes.extend(syntax.fixes)

    if syntax.parsed is None:
        result.warnings.append(f"JSON syntax unfixable: {syntax.error}")
        if opts.allow_fallback:
            return _try_fallback(response, result, opts)
        return _finish(result)

    # Phase 3: schema structure
    logger.debug("Phase 3: fixing schema structure")
    schema = normalize_schema(syntax.parsed)
    result.diagnostics['schema_fixes_applied'] = len(schema.fixes)
    result.fixes.extend(schema.fixes)
    result.warnings.extend(schema.warnings)

    if schema.normalized is None:
        result.warnings.append('Schema structure unfixable')
        if opts.allow_fallback:
            return _try_fallback(response, result, opts)
        return _finish(result)

    # Phase 4: value normalization
    logger.debug("Phase 4: normalizing values")
    values = normalize_values(schema.normalized, opts)
    result.diagnostics['value_normalizations_applied'] = len(values.fixes)
    result.fixes.extend(values.fixes)
    result.warnings.extend(values.warnings)
    result.scene = values.normalized

    valid, errors = validate_normalized(result.scene)
    if not valid:
        result.warnings.extend(f"Schema validation: {error}" for error in errors)

    result.confidence = pipeline_confidence(result.confidence, len(result.fixes))
    return _finish(result)


# =============================================================================
# Utilities
# =============================================================================

def has_scene_data(response: Any) -> bool:
    """Cheap check for scene markers, for callers that want to skip linting."""
    if not response or not isinstance(response, str):
        return False
    return any(pattern.search(response) for pattern in _SCENE_MARKERS)


def strip_scene_json(response: Any) -> str:
    """Return the narrative with the chosen scene block removed."""
    if not response or not isinstance(response, str):
        return ''
    return extract_best(response).narrative


def diagnose_response(response: Any) -> Dict[str, Any]:
    text = response if isinstance(response, str) else ''
    candidates = extract_all_candidates(text)
    return {
        'total_length': len(text),
        'json_candidates': len(candidates),
        'candidates': [
            {
                'source': c.source_pattern,
                'length': len(c.raw),
                'confidence': c.confidence,
                'valid': c.is_valid,
                'parse_error': c.parse_error,
            }
            for c in candidates
        ],
        'has_explicit_tag': bool(re.search(r"```vn-scene|<vn-scene>|\[VN-SCENE\]", text, re.IGNORECASE)),
        'has_generic_json': bool(re.search(r"```json", text, re.IGNORECASE)),
        'has_raw_json': bool(re.match(r"\s*\{", text)),
    }


# =============================================================================
# Batch processing
# =============================================================================

def batch_stats(results: List[LintResult]) -> Dict[str, Any]:
    total = len(results)
    successful = sum(1 for r in results if r.scene is not None)
    from_fallback = sum(1 for r in results if r.source == FALLBACK_SOURCE)
    from_json = sum(1 for r in results if r.source not in (FALLBACK_SOURCE, 'none'))
    total_fixes = sum(len(r.fixes) for r in results)

    fix_counts: Counter = Counter()
    for r in results:
        for fix in r.fixes:
            fix_counts[fix.split(':')[0].strip()] += 1

    def _ratio(value: float) -> float:
        return round(value / total, 1) if total else 0.0

    return {
        'total': total,
        'successful': successful,
        'from_json': from_json,
        'from_fallback': from_fallback,
        'failed': total - successful,
        'success_rate': _ratio(successful * 100),
        'avg_confidence': _ratio(sum(r.confidence for r in results)),
        'total_fixes': total_fixes,
        'avg_fixes_per_response': _ratio(total_fixes),
        'fix_counts': dict(fix_counts),
    }


def lint_many(responses: Iterable[Any], options: Any = None) -> Tuple[List[LintResult], Dict[str, Any]]:
    opts = LintOptions.coerce(options)
    results = [lint_scene_response(r, opts) for r in responses]
    return results, batch_stats(results)


class SceneLinter:
    """Config-driven front end used by the CLI."""

    def __init__(self, config_path: Optional[str] = "config/default.yaml"):
        self.config = Config(config_path) if config_path else None
        self.options = LintOptions.from_config(self.config) if self.config else LintOptions()
        output_cfg = self.config.get('output', {}) if self.config else {}
        self.indent = int(output_cfg.get('indent', 2))

    def lint(self, response: Any) -> LintResult:
        return lint_scene_response(response, self.options)

    def diagnose(self, response: Any) -> Dict[str, Any]:
        return diagnose_response(response)

    def lint_file(self, file_path: str, output_path: Optional[str] = None,
                  diagnose: bool = False) -> Dict[str, Any]:
        path = Path(file_path)
        text = path.read_text(encoding='utf-8')
        payload = self.lint(text).to_dict()
        if diagnose:
            payload['diagnosis'] = self.diagnose(text)

        if output_path:
            out = Path(output_path)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(json.dumps(payload, ensure_ascii=False, indent=self.indent), encoding='utf-8')
            logger.info(f"Wrote {out}")
        return payload
