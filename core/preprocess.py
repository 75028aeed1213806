"""Raw response cleanup applied before candidate extraction."""
from __future__ import annotations

import re

_INVISIBLES_RE = re.compile(r"[\u200B-\u200D\uFEFF]")
_REASONING_TAGS = ('thinking', 'reasoning', 'internal', 'thought')
_REASONING_RES = [
    re.compile(rf"<{tag}>[\s\S]*?</{tag}>", re.IGNORECASE) for tag in _REASONING_TAGS
]

_HTML_ENTITIES = {
    '&lt;': '<',
    '&gt;': '>',
    '&quot;': '"',
    '&#39;': "'",
    '&apos;': "'",
    '&amp;': '&',
    '&nbsp;': ' ',
}
_ENTITY_RE = re.compile(r"&[a-z]+;|&#\d+;", re.IGNORECASE)


def remove_invisibles(text: str) -> str:
    if text.startswith('\ufeff'):
        text = text[1:]
    return _INVISIBLES_RE.sub('', text)


def strip_reasoning_tags(text: str) -> str:
    for pattern in _REASONING_RES:
        text = pattern.sub('', text)
    return text


def decode_html_entities(text: str) -> str:
    # Only the fixed entity set; anything else is left verbatim.
    return _ENTITY_RE.sub(lambda m: _HTML_ENTITIES.get(m.group(0).lower(), m.group(0)), text)


def preprocess(text: str) -> str:
    """Strip BOM/zero-width characters, reasoning tags and common HTML entities.

    ``\\uXXXX`` escapes are left for the JSON decoder.
    """
    if not text or not isinstance(text, str):
        return ''
    text = remove_invisibles(text)
    text = strip_reasoning_tags(text)
    return decode_html_entities(text)
