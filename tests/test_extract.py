import json
import unittest

from core.models import Candidate
from core.preprocess import preprocess
from core.scoring import candidate_confidence, invalid_candidate_confidence, pipeline_confidence
from linter.extract import (
    EXTRACTION_PATTERNS,
    extract_all_candidates,
    extract_best,
    find_matching_brace,
    looks_like_scene,
    prose_intro_start,
    rank_candidates,
)

VN_SCENE = (
    '```vn-scene\n'
    '{"scene":{"background":"park"},"characters":[{"name":"Alice","expression":"happy"}],'
    '"choices":[{"label":"Go","prompt":"Go home"},{"label":"Stay","prompt":"Stay here"}]}\n'
    '```'
)


class ExtractBestTest(unittest.TestCase):
    def test_vn_scene_block(self):
        result = extract_best("She waves.\n" + VN_SCENE)
        self.assertEqual(result.source, 'vn-scene-block')
        self.assertEqual(result.confidence, 100)
        self.assertEqual(result.fixes, [])
        self.assertEqual(json.loads(result.raw_json)['scene']['background'], 'park')
        self.assertEqual(result.narrative, 'She waves.')

    def test_valid_object_beats_truncated_fence(self):
        text = (
            'Here we go:\n```json\n{"scene": {"background": "park"\n```\n'
            'Retry: {"scene": {"background": "beach"}, "characters": []}'
        )
        result = extract_best(text)
        self.assertEqual(result.source, 'inline-json')
        self.assertEqual(json.loads(result.raw_json)['scene']['background'], 'beach')

    def test_invalid_candidate_passed_to_repair(self):
        result = extract_best('```json\n{"scene": {"background": "park",}}\n```')
        self.assertEqual(result.source, 'json-block-invalid')
        self.assertEqual(result.confidence, 38)
        self.assertIn('Using invalid JSON candidate for repair attempt', result.fixes)

    def test_no_candidates(self):
        result = extract_best("Just some prose with no data.")
        self.assertIsNone(result.raw_json)
        self.assertEqual(result.source, 'none')
        self.assertEqual(result.attempts, 0)

    def test_empty_input(self):
        result = extract_best('')
        self.assertIsNone(result.raw_json)
        self.assertEqual(result.narrative, '')

    def test_reasoning_tags_are_stripped(self):
        result = extract_best('<thinking>plan the scene</thinking>' + VN_SCENE)
        self.assertIn('Preprocessed response (stripped tags/entities)', result.fixes)
        self.assertEqual(result.source, 'vn-scene-block')
        self.assertNotIn('plan the scene', result.narrative)

    def test_function_call_arguments(self):
        text = '{"name": "update_scene", "arguments": {"scene": {"background": "cafe"}, "characters": []}}'
        result = extract_best(text)
        self.assertEqual(result.source, 'function-call')
        self.assertEqual(json.loads(result.raw_json)['scene']['background'], 'cafe')

    def test_function_call_string_arguments(self):
        text = '{"name": "set_scene", "arguments": "{\\"scene\\": {\\"background\\": \\"cafe\\"}}"}'
        result = extract_best(text)
        self.assertEqual(result.source, 'function-call')
        self.assertEqual(json.loads(result.raw_json), {'scene': {'background': 'cafe'}})

    def test_yaml_block(self):
        text = "```yaml\nscene:\n  background: beach\ncharacters:\n  - name: Bob\n```"
        result = extract_best(text)
        self.assertEqual(result.source, 'yaml-block')
        self.assertEqual(json.loads(result.raw_json)['characters'], [{'name': 'Bob'}])

    def test_json_after_prose_intro(self):
        result = extract_best('Sure! Here is the scene data:\n{"scene": {"background": "park"}}')
        self.assertEqual(result.source, 'json-after-prose')
        self.assertEqual(result.narrative, 'Sure!')


class ProseIntroTest(unittest.TestCase):
    def test_intro_line_before_brace(self):
        text = 'The data:{"a": 1}'
        self.assertEqual(prose_intro_start(text, text.index('{')), 0)

    def test_no_intro(self):
        text = 'I like cake {"a": 1}'
        self.assertIsNone(prose_intro_start(text, text.index('{')))
        text = 'Look here:\n{"a": 1}'
        self.assertIsNone(prose_intro_start(text, text.index('{')))

    def test_long_single_line_prose(self):
        self.assertEqual(extract_all_candidates('the data shows scene: value ' * 400), [])
        candidates = extract_all_candidates('the data shows scene: {x} ' * 400)
        self.assertEqual([c.source_pattern for c in candidates], ['json-after-prose'])
        self.assertFalse(candidates[0].is_valid)


class CandidateTest(unittest.TestCase):
    def test_discovery_order(self):
        candidates = extract_all_candidates(VN_SCENE)
        self.assertTrue(candidates)
        self.assertEqual(candidates[0].source_pattern, 'vn-scene-block')
        self.assertTrue(candidates[0].is_valid)

    def test_duplicate_spans_collapse(self):
        raws = [c.raw for c in extract_all_candidates(VN_SCENE)]
        self.assertEqual(len(raws), len(set(raws)))

    def test_rank_by_priority_then_confidence(self):
        low = Candidate(raw='{}', full_match='{}', source_pattern='inline-json', priority=1, confidence=90)
        high = Candidate(raw='{}', full_match='{}', source_pattern='json-block', priority=6, confidence=40)
        tie = Candidate(raw='{}', full_match='{}', source_pattern='text-block', priority=6, confidence=70)
        ranked = rank_candidates([low, high, tie])
        self.assertEqual([c.source_pattern for c in ranked], ['text-block', 'json-block', 'inline-json'])

    def test_pattern_table_is_ordered(self):
        priorities = [p.priority for p in EXTRACTION_PATTERNS]
        self.assertEqual(priorities, sorted(priorities, reverse=True))
        self.assertEqual(EXTRACTION_PATTERNS[0].name, 'vn-scene-block')
        self.assertEqual(EXTRACTION_PATTERNS[-1].name, 'inline-json')

    def test_find_matching_brace_skips_strings(self):
        self.assertEqual(find_matching_brace('{"a": "}"}', 0), 9)
        self.assertIsNone(find_matching_brace('{"a": 1', 0))

    def test_looks_like_scene(self):
        self.assertTrue(looks_like_scene({'scene': {}}))
        self.assertTrue(looks_like_scene({'chars': []}))
        self.assertTrue(looks_like_scene({'vn_scene': {'background': 'x'}}))
        self.assertFalse(looks_like_scene({'name': 'x'}))
        self.assertFalse(looks_like_scene(['scene']))


class ScoringTest(unittest.TestCase):
    def test_candidate_confidence(self):
        raw = '{"scene": {"background": "park"}}'
        self.assertEqual(candidate_confidence(6, True, raw), 60 + 20 + 5 + 3)
        self.assertEqual(candidate_confidence(1, False, '{}'), 0)
        self.assertEqual(candidate_confidence(6, True, '{"error": "debug", "scene": 1}'), 55)

    def test_invalid_candidate_floor(self):
        self.assertEqual(invalid_candidate_confidence(20), 10)
        self.assertEqual(invalid_candidate_confidence(80), 50)

    def test_pipeline_confidence(self):
        self.assertEqual(pipeline_confidence(95, 0), 95)
        self.assertEqual(pipeline_confidence(95, 5), 85)
        self.assertEqual(pipeline_confidence(40, 4), 50)


class PreprocessTest(unittest.TestCase):
    def test_entities_and_invisibles(self):
        self.assertEqual(preprocess('\ufeff&lt;b&gt;\u200bhi&amp;'), '<b>hi&')

    def test_non_string(self):
        self.assertEqual(preprocess(None), '')


if __name__ == '__main__':
    unittest.main()
