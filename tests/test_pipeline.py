import json
import os
from pathlib import Path
import tempfile
import unittest
from unittest import mock

from core.config import Config
from core.models import LintOptions
from pipeline.orchestrator import (
    SceneLinter,
    batch_stats,
    diagnose_response,
    has_scene_data,
    lint_many,
    lint_scene_response,
    strip_scene_json,
)

VN_SCENE = (
    'Alice waves from across the park.\n'
    '```vn-scene\n'
    '{"scene":{"background":"park"},"characters":[{"name":"Alice","expression":"happy"}],'
    '"choices":[{"label":"Go","prompt":"Go home"},{"label":"Stay","prompt":"Stay here"}]}\n'
    '```'
)
ALIASED = '{"chars": [{"who": "Bob", "mood": "sad"}], "options": ["Leave", "Stay"]}'
PROSE = "Alice smiles and walks into the kitchen. \n1. Say hi\n2. Leave"


class LintSceneResponseTest(unittest.TestCase):
    def test_explicit_scene_block(self):
        result = lint_scene_response(VN_SCENE)
        self.assertEqual(result.source, 'vn-scene-block')
        self.assertEqual(result.confidence, 100)
        self.assertEqual(result.scene['scene']['background'], 'park')
        self.assertEqual(result.scene['characters'][0]['name'], 'Alice')
        self.assertEqual(result.narrative, 'Alice waves from across the park.')
        self.assertEqual(result.warnings, [])
        self.assertEqual(result.diagnostics['original_length'], len(VN_SCENE))
        self.assertEqual(result.diagnostics['syntax_fixes_applied'], 0)

    def test_aliased_fields(self):
        result = lint_scene_response(ALIASED)
        self.assertEqual(result.source, 'raw-json-full')
        self.assertIsNone(result.scene['scene'])
        self.assertEqual(result.scene['characters'][0]['name'], 'Bob')
        self.assertEqual(result.scene['characters'][0]['expression'], 'sad')
        self.assertEqual([c['label'] for c in result.scene['choices']], ['Leave', 'Stay'])
        self.assertTrue(result.fixes)
        self.assertEqual(result.confidence, 50)

    def test_valid_object_after_truncated_fence(self):
        text = (
            'Here we go:\n```json\n{"scene": {"background": "park"\n```\n'
            'Retry: {"scene": {"background": "beach"}, "characters": []}'
        )
        result = lint_scene_response(text)
        self.assertEqual(result.source, 'inline-json')
        self.assertEqual(result.scene['scene']['background'], 'beach')

    def test_prose_fallback(self):
        result = lint_scene_response(PROSE)
        self.assertEqual(result.source, 'fallback-text')
        self.assertEqual(result.scene['scene']['background'], 'kitchen')
        self.assertEqual(result.scene['characters'][0]['name'], 'Alice')
        self.assertEqual(result.scene['characters'][0]['expression'], 'happy')
        self.assertEqual([c['label'] for c in result.scene['choices']], ['Say hi', 'Leave'])
        self.assertEqual(result.confidence, 45)
        self.assertIn('Used fallback text extraction', result.fixes)
        self.assertIn('Scene data extracted from narrative (no JSON found)', result.warnings)

    def test_empty_and_invalid_input(self):
        for value in ('', None, 42):
            result = lint_scene_response(value)
            self.assertIsNone(result.scene)
            self.assertEqual(result.confidence, 0)
            self.assertEqual(result.warnings, ['Empty or invalid response'])

    def test_prose_fallback_uses_vocabulary(self):
        result = lint_scene_response(PROSE, {'valid_expressions': ['joy', 'sadness']})
        self.assertEqual(result.source, 'fallback-text')
        self.assertEqual(result.scene['characters'][0]['expression'], 'joy')

    def test_low_confidence_fallback_rejected(self):
        result = lint_scene_response("Bob: hi there")
        self.assertIsNone(result.scene)
        self.assertEqual(result.confidence, 0)
        self.assertEqual(result.source, 'none')
        self.assertIn('Fallback extraction failed or low confidence', result.warnings)

    def test_fallback_at_threshold_rejected(self):
        # one character (10) plus choices (20) lands exactly on the threshold
        result = lint_scene_response("Bob: hi there\n1. Open the gate\n2. Walk away")
        self.assertIsNone(result.scene)
        self.assertEqual(result.confidence, 0)
        self.assertIn('Fallback extraction failed or low confidence', result.warnings)

    def test_null_candidate(self):
        result = lint_scene_response('```json\nnull\n```')
        self.assertIsNone(result.scene)
        self.assertIn('JSON syntax unfixable: Parsed value is null', result.warnings)

    def test_fallback_disabled(self):
        result = lint_scene_response(PROSE, {'allow_fallback': False})
        self.assertIsNone(result.scene)
        self.assertEqual(result.source, 'none')
        self.assertIn('No JSON block found in response', result.warnings)

    def test_non_object_json(self):
        result = lint_scene_response('```json\n["a", "b"]\n```')
        self.assertIsNone(result.scene)
        self.assertIn('Schema structure unfixable', result.warnings)
        self.assertEqual(result.confidence, 0)

    def test_camel_case_options(self):
        result = lint_scene_response(VN_SCENE, {'validExpressions': ['joy']})
        self.assertEqual(result.scene['characters'][0]['expression'], 'joy')
        self.assertEqual(result.diagnostics['value_normalizations_applied'], 1)
        self.assertEqual(result.confidence, 98)

    def test_options_object(self):
        result = lint_scene_response(VN_SCENE, LintOptions(valid_backgrounds=['city_park']))
        self.assertEqual(result.scene['scene']['background'], 'city_park')

    def test_result_serializes(self):
        payload = lint_scene_response(VN_SCENE).to_dict()
        self.assertEqual(json.loads(json.dumps(payload))['source'], 'vn-scene-block')


class UtilityTest(unittest.TestCase):
    def test_has_scene_data(self):
        self.assertTrue(has_scene_data(VN_SCENE))
        self.assertTrue(has_scene_data('{"characters": []}'))
        self.assertFalse(has_scene_data('Just a story.'))
        self.assertFalse(has_scene_data(None))

    def test_strip_scene_json(self):
        self.assertEqual(strip_scene_json(VN_SCENE), 'Alice waves from across the park.')
        self.assertEqual(strip_scene_json(''), '')

    def test_diagnose_response(self):
        report = diagnose_response(VN_SCENE)
        self.assertEqual(report['total_length'], len(VN_SCENE))
        self.assertTrue(report['has_explicit_tag'])
        self.assertFalse(report['has_generic_json'])
        self.assertFalse(report['has_raw_json'])
        self.assertEqual(report['json_candidates'], len(report['candidates']))
        self.assertEqual(report['candidates'][0]['source'], 'vn-scene-block')
        self.assertTrue(report['candidates'][0]['valid'])

    def test_diagnose_raw_json(self):
        report = diagnose_response(ALIASED)
        self.assertTrue(report['has_raw_json'])
        self.assertFalse(report['has_explicit_tag'])


class BatchTest(unittest.TestCase):
    def test_lint_many(self):
        results, stats = lint_many([VN_SCENE, '', PROSE])
        self.assertEqual(len(results), 3)
        self.assertEqual(stats['total'], 3)
        self.assertEqual(stats['successful'], 2)
        self.assertEqual(stats['from_json'], 1)
        self.assertEqual(stats['from_fallback'], 1)
        self.assertEqual(stats['failed'], 1)
        self.assertEqual(stats['success_rate'], 66.7)
        self.assertEqual(stats['avg_confidence'], 48.3)
        self.assertEqual(stats['fix_counts']['Used fallback text extraction'], 1)
        self.assertEqual(stats['fix_counts']['Background'], 1)

    def test_empty_batch(self):
        stats = batch_stats([])
        self.assertEqual(stats['total'], 0)
        self.assertEqual(stats['success_rate'], 0.0)
        self.assertEqual(stats['avg_confidence'], 0.0)
        self.assertEqual(stats['avg_fixes_per_response'], 0.0)
        self.assertEqual(stats['fix_counts'], {})


class SceneLinterTest(unittest.TestCase):
    def setUp(self):
        self.base_dir = Path(__file__).parent
        self.config_path = str(self.base_dir / "fixtures" / "test_config.yaml")
        self.sample_file = self.base_dir / "fixtures" / "sample_response.txt"

    def test_lint_file_writes_output(self):
        linter = SceneLinter(config_path=self.config_path)
        with tempfile.TemporaryDirectory() as tmp:
            output_path = Path(tmp) / "out" / "sample_response_scene.json"
            payload = linter.lint_file(str(self.sample_file), str(output_path), diagnose=True)
            self.assertTrue(output_path.exists())
            written = json.loads(output_path.read_text(encoding='utf-8'))

        self.assertEqual(written, payload)
        self.assertEqual(payload['source'], 'vn-scene-block')
        scene = payload['scene']
        self.assertEqual(scene['scene']['background'], 'park')
        self.assertEqual(scene['scene']['music'], 'calm')
        self.assertEqual(scene['characters'][0]['expression'], 'joy')
        self.assertEqual(scene['characters'][0]['position'], 'left')
        self.assertEqual([c['label'] for c in scene['choices']], ['Sit beside her', 'Keep walking'])
        self.assertIn('diagnosis', payload)

    def test_options_from_config(self):
        linter = SceneLinter(config_path=self.config_path)
        self.assertEqual(linter.options.valid_characters, ['Alice', 'Bob'])
        self.assertTrue(linter.options.allow_fallback)
        self.assertEqual(linter.indent, 2)

    def test_missing_config(self):
        with self.assertRaises(FileNotFoundError):
            SceneLinter(config_path=str(self.base_dir / "fixtures" / "missing.yaml"))

    def test_env_overrides_vocabulary(self):
        with mock.patch.dict(os.environ, {'SCENE_LINT_VALID_CHARACTERS': 'Mina, Kai,'}):
            config = Config(self.config_path)
            self.assertEqual(config.lint['valid_characters'], ['Mina', 'Kai'])
        self.assertEqual(config.lint['valid_backgrounds'], ['park', 'beach', 'kitchen'])


if __name__ == '__main__':
    unittest.main()
