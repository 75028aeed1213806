"""Curated synonym and keyword tables with their reverse indexes.

All tables are built once at import time and exposed through read-only
mappings, so they can be shared freely between concurrent lint calls.
"""
from __future__ import annotations

import re
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Pattern, Tuple


def _freeze(table: Dict[str, Iterable[str]]) -> Mapping[str, Tuple[str, ...]]:
    return MappingProxyType({k: tuple(v) for k, v in table.items()})


def _reverse_index(table: Mapping[str, Tuple[str, ...]]) -> Mapping[str, str]:
    index: Dict[str, str] = {}
    for canonical, variants in table.items():
        for variant in variants:
            index[variant.lower()] = canonical
    return MappingProxyType(index)


# Canonical expression -> observed synonyms
EXPRESSION_SYNONYMS = _freeze({
    'happy': ['happy', 'joy', 'joyful', 'cheerful', 'pleased', 'delighted', 'glad', 'content', 'elated', 'merry'],
    'smile': ['smile', 'smiling', 'grin', 'grinning', 'beam', 'beaming'],
    'sad': ['sad', 'unhappy', 'sorrowful', 'depressed', 'melancholy', 'blue', 'down', 'dejected', 'gloomy'],
    'cry': ['cry', 'crying', 'tears', 'tearful', 'weeping', 'sobbing'],
    'angry': ['angry', 'mad', 'furious', 'enraged', 'irate', 'livid', 'outraged', 'incensed', 'wrathful'],
    'annoyed': ['annoyed', 'irritated', 'frustrated', 'bothered', 'peeved', 'vexed', 'agitated'],
    'afraid': ['afraid', 'scared', 'frightened', 'terrified', 'fearful', 'panicked', 'alarmed'],
    'nervous': ['nervous', 'anxious', 'worried', 'uneasy', 'apprehensive', 'jittery', 'tense'],
    'surprised': ['surprised', 'shocked', 'astonished', 'amazed', 'stunned', 'startled', 'taken_aback'],
    'love': ['love', 'loving', 'adoring', 'affectionate', 'romantic', 'smitten', 'infatuated'],
    'blush': ['blush', 'blushing', 'flustered', 'embarrassed', 'shy', 'bashful'],
    'neutral': ['neutral', 'default', 'normal', 'calm', 'composed', 'relaxed', 'idle', 'base'],
    'thinking': ['thinking', 'ponder', 'pondering', 'contemplating', 'thoughtful', 'musing', 'curious'],
    'confused': ['confused', 'puzzled', 'perplexed', 'bewildered', 'baffled', 'uncertain'],
    'smug': ['smug', 'confident', 'proud', 'cocky', 'arrogant', 'haughty', 'self_satisfied'],
    'smirk': ['smirk', 'smirking', 'sly', 'cunning', 'devious', 'mischievous'],
    'tired': ['tired', 'exhausted', 'sleepy', 'drowsy', 'weary', 'fatigued', 'worn_out'],
    'disgust': ['disgust', 'disgusted', 'grossed_out', 'revolted', 'repulsed', 'nauseated'],
    'pain': ['pain', 'hurt', 'pained', 'aching', 'suffering', 'wincing', 'grimace'],
    'determined': ['determined', 'resolute', 'focused', 'serious', 'stern', 'intense'],
})

POSITION_VARIANTS = _freeze({
    'left': ['left', 'l', 'left_side', 'leftside', 'stage_left', 'far_left', 'screen_left'],
    'right': ['right', 'r', 'right_side', 'rightside', 'stage_right', 'far_right', 'screen_right'],
    'center': ['center', 'c', 'middle', 'm', 'centre', 'mid', 'center_stage', 'front'],
    'left-center': ['left-center', 'left_center', 'lc', 'center-left', 'center_left', 'mid_left'],
    'right-center': ['right-center', 'right_center', 'rc', 'center-right', 'center_right', 'mid_right'],
})

ACTION_VARIANTS = _freeze({
    'enters': ['enters', 'enter', 'entering', 'arrives', 'appears', 'shows', 'joins', 'comes_in'],
    'exits': ['exits', 'exit', 'exiting', 'leaves', 'departs', 'disappears', 'goes', 'walks_out'],
    'speaks': ['speaks', 'speak', 'speaking', 'says', 'talks', 'talking', 'dialogue'],
    'moves': ['moves', 'move', 'moving', 'shifts', 'transitions', 'slides'],
})

POSITIONS = frozenset(POSITION_VARIANTS)
ACTIONS = frozenset(ACTION_VARIANTS)

# Emotion category -> narrative cue words. Order matters: ties go to the first category.
EMOTION_KEYWORDS = _freeze({
    'happy': [
        'smiles', 'grins', 'beams', 'laughs', 'giggles', 'chuckles',
        'happily', 'cheerfully', 'joyfully', 'delighted', 'pleased',
        'excited', 'thrilled', 'overjoyed', 'gleefully',
    ],
    'sad': [
        'frowns', 'sighs', 'tears', 'cries', 'weeps', 'sobs',
        'sadly', 'sorrowfully', 'mournfully', 'dejected', 'depressed',
        'heartbroken', 'disappointed', 'dismayed',
    ],
    'angry': [
        'glares', 'scowls', 'snarls', 'growls', 'shouts', 'yells',
        'angrily', 'furiously', 'rage', 'raging', 'livid', 'fuming',
        'incensed', 'outraged', 'irritated',
    ],
    'surprised': [
        'gasps', 'startled', 'shocked', 'stunned', 'amazed',
        'eyes widen', 'jaw drops', 'taken aback', 'dumbfounded',
        'astonished', 'incredulous', 'disbelief',
    ],
    'afraid': [
        'trembles', 'shakes', 'shivers', 'cowers', 'flinches',
        'fearfully', 'terrified', 'frightened', 'scared', 'panicked',
        'alarmed', 'horrified', 'petrified',
    ],
    'nervous': [
        'fidgets', 'stammers', 'stutters', 'hesitates', 'gulps',
        'nervously', 'anxiously', 'worriedly', 'uneasily', 'apprehensively',
        'sweating', 'trembling voice',
    ],
    'blush': [
        'blushes', 'blushing', 'cheeks redden', 'face flushes',
        'embarrassed', 'flustered', 'shy', 'bashful', 'coyly',
        'demurely', 'sheepishly',
    ],
    'thinking': [
        'ponders', 'considers', 'contemplates', 'muses', 'wonders',
        'thoughtfully', 'pensively', 'reflectively', 'curiously',
        'tilts head', 'chin in hand', 'brow furrows',
    ],
    'smug': [
        'smirks', 'smugly', 'confidently', 'arrogantly', 'cockily',
        'self-satisfied', 'knowing look', 'raised eyebrow', 'sly smile',
        'triumphantly',
    ],
    'neutral': [
        'calmly', 'evenly', 'flatly', 'impassively', 'stoically',
        'expressionless', 'blank expression', 'matter-of-factly',
    ],
})

EXPRESSION_LOOKUP = _reverse_index(EXPRESSION_SYNONYMS)
POSITION_LOOKUP = _reverse_index(POSITION_VARIANTS)
ACTION_LOOKUP = _reverse_index(ACTION_VARIANTS)
KEYWORD_TO_EMOTION = _reverse_index(EMOTION_KEYWORDS)


# (pattern, background, suffix): exactly one of background/suffix is set
_LOCATION_TABLE = [
    (r"\b(bedroom|room)\b", 'bedroom', None),
    (r"\b(living room|lounge)\b", 'living_room', None),
    (r"\b(kitchen)\b", 'kitchen', None),
    (r"\b(bathroom)\b", 'bathroom', None),
    (r"\b(office|study)\b", 'office', None),
    (r"\b(classroom|class)\b", 'classroom', None),
    (r"\b(library)\b", 'library', None),
    (r"\b(cafeteria|cafe|coffee shop)\b", 'cafe', None),
    (r"\b(restaurant)\b", 'restaurant', None),
    (r"\b(bar|pub)\b", 'bar', None),
    (r"\b(gym)\b", 'gym', None),
    (r"\b(hospital|clinic)\b", 'hospital', None),
    (r"\b(store|shop)\b", 'shop', None),
    (r"\b(mall)\b", 'mall', None),
    (r"\b(hallway|corridor)\b", 'hallway', None),
    (r"\b(park)\b", 'park', None),
    (r"\b(street|road|sidewalk)\b", 'street', None),
    (r"\b(beach|shore)\b", 'beach', None),
    (r"\b(forest|woods)\b", 'forest', None),
    (r"\b(garden)\b", 'garden', None),
    (r"\b(rooftop)\b", 'rooftop', None),
    (r"\b(balcony)\b", 'balcony', None),
    (r"\b(pool|swimming)\b", 'pool', None),
    (r"\b(at night|nighttime|evening)\b", None, '_night'),
    (r"\b(sunset|dusk)\b", None, '_sunset'),
    (r"\b(morning|dawn|sunrise)\b", None, '_morning'),
]

LOCATION_PATTERNS: Tuple[Tuple[Pattern[str], Optional[str], Optional[str]], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), background, suffix)
    for pattern, background, suffix in _LOCATION_TABLE
)


# Field alias lists used by the schema normalizer; first entry is the canonical name.
FIELD_ALIASES = _freeze({
    'scene': ['scene', 'setting', 'environment', 'location', 'stage', 'backdrop', 'scenery'],
    'background': ['background', 'bg', 'backdrop', 'image', 'backgroundImage', 'back', 'scenery'],
    'music': ['music', 'bgm', 'backgroundMusic', 'track', 'audio', 'soundtrack', 'song'],
    'sfx': ['sfx', 'soundEffect', 'sound', 'effect', 'soundFx', 'fx', 'sounds'],
    'characters': ['characters', 'chars', 'sprites', 'actors', 'npcs', 'people', 'cast', 'speakers'],
    'name': ['name', 'characterName', 'speaker', 'id', 'charName', 'who'],
    'expression': ['expression', 'emotion', 'mood', 'face', 'feeling', 'state', 'emote', 'expr'],
    'outfit': ['outfit', 'clothes', 'clothing', 'costume', 'attire', 'dress', 'wear'],
    'position': ['position', 'pos', 'location', 'place', 'side', 'slot', 'alignment'],
    'action': ['action', 'movement', 'move', 'act', 'transition', 'state', 'status'],
    'choices': ['choices', 'options', 'decisions', 'responses', 'buttons', 'actions', 'menu'],
    'label': ['label', 'text', 'title', 'button', 'option', 'display', 'caption'],
    'prompt': ['prompt', 'action', 'result', 'consequence', 'effect', 'description', 'outcome'],
})

SCENE_ENVELOPE_KEYS = ('vn_scene', 'vnScene', 'vn-scene', 'sceneData', 'scene_data')
SINGLE_CHARACTER_KEYS = ('character', 'char', 'speaker', 'actor', 'npc')
KNOWN_TOP_LEVEL_KEYS = frozenset({'scene', 'characters', 'choices', 'data', 'result', 'vn_scene'})
