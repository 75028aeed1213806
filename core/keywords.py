"""Emotion keyword detection utilities."""
from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence

from core.lookups import EMOTION_KEYWORDS, EXPRESSION_LOOKUP, KEYWORD_TO_EMOTION


def score_emotions(text: str) -> Dict[str, int]:
    """Count the distinct cue words of each emotion category present in ``text``."""
    lowered = text.lower() if isinstance(text, str) else ''
    scores: Dict[str, int] = {}
    for emotion, keywords in EMOTION_KEYWORDS.items():
        scores[emotion] = sum(1 for kw in keywords if kw in lowered)
    return scores


def match_expression(emotion: str, valid_expressions: Sequence[str]) -> str:
    """Map an expression onto the caller's vocabulary: exact, then synonym, then substring.

    Returns ``emotion`` unchanged when the vocabulary is empty or nothing matches.
    """
    if not emotion or not valid_expressions:
        return emotion
    wanted = emotion.lower()
    for expr in valid_expressions:
        if expr.lower() == wanted:
            return expr
    for expr in valid_expressions:
        lowered = expr.lower()
        if EXPRESSION_LOOKUP.get(lowered) == wanted or EXPRESSION_LOOKUP.get(wanted) == lowered:
            return expr
    for expr in valid_expressions:
        lowered = expr.lower()
        if lowered in wanted or wanted in lowered:
            return expr
    return emotion


def detect_emotion(text: str, valid_expressions: Sequence[str] = ()) -> Optional[str]:
    scores = score_emotions(text)
    best_emotion = None
    best_score = 0
    # dict order == table order, so the first category wins a tie
    for emotion, score in scores.items():
        if score > best_score:
            best_score = score
            best_emotion = emotion
    if best_emotion is None:
        return None
    return match_expression(best_emotion, valid_expressions)


def emotion_for_word(word: str) -> Optional[str]:
    if not word:
        return None
    return KEYWORD_TO_EMOTION.get(word.lower())


def cue_words(min_len: int = 1) -> List[str]:
    """Single-word cues, longest first (useful for building alternations)."""
    words = [kw for kw in KEYWORD_TO_EMOTION if ' ' not in kw and len(kw) >= min_len]
    return sorted(words, key=len, reverse=True)


def cue_alternation() -> str:
    return '|'.join(re.escape(w) for w in cue_words())
