"""Confidence scoring utilities (candidate, pipeline and fallback)."""
from __future__ import annotations

from typing import Any, Dict, List, Tuple


FIELD_BONUSES: List[Tuple[str, int]] = [
    ('"scene"', 5),
    ('"characters"', 5),
    ('"choices"', 5),
    ('"background"', 3),
    ('"expression"', 3),
]

NOISE_MARKERS = ('"error"', '"debug"')

SHORT_SPAN_CHARS = 20
FIX_PENALTY = 2
FIXED_RESULT_FLOOR = 50
INVALID_CANDIDATE_PENALTY = 30
INVALID_CANDIDATE_FLOOR = 10


def clamp(score: int) -> int:
    return max(0, min(100, int(score)))


def candidate_confidence(priority: int, is_valid: bool, raw: str) -> int:
    score = priority * 10

    if is_valid:
        score += 20

    for marker, bonus in FIELD_BONUSES:
        if marker in raw:
            score += bonus

    if len(raw) < SHORT_SPAN_CHARS:
        score -= 20

    # Debug/error payloads echo schema keys but are not scenes
    if any(marker in raw for marker in NOISE_MARKERS):
        score -= 30

    return clamp(score)


def invalid_candidate_confidence(confidence: int) -> int:
    return clamp(max(INVALID_CANDIDATE_FLOOR, confidence - INVALID_CANDIDATE_PENALTY))


def pipeline_confidence(extraction_confidence: int, total_fixes: int) -> int:
    """Two points off per applied fix, never below the floor once data exists."""
    if total_fixes <= 0:
        return clamp(extraction_confidence)
    return clamp(max(FIXED_RESULT_FLOOR, extraction_confidence - total_fixes * FIX_PENALTY))


def fallback_confidence(scene: Dict[str, Any]) -> int:
    score = 0
    if scene.get('scene') and scene['scene'].get('background'):
        score += 15
    score += 10 * min(len(scene.get('characters') or []), 3)
    if scene.get('choices'):
        score += 20
    return clamp(score)
