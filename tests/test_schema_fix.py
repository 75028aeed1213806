import unittest

from linter.schema_fix import (
    SCHEMA_STEPS,
    find_characters,
    normalize_schema,
    validate_normalized,
)


def _char(name, expression=None, outfit=None, position=None, action=None):
    return {'name': name, 'expression': expression, 'outfit': outfit, 'position': position, 'action': action}


class NormalizeSchemaTest(unittest.TestCase):
    def test_alias_fields(self):
        result = normalize_schema({"chars": [{"who": "Bob", "mood": "sad"}], "options": ["Leave", "Stay"]})
        normalized = result.normalized
        self.assertIsNone(normalized['scene'])
        self.assertEqual(normalized['characters'], [_char('Bob', 'sad')])
        self.assertEqual(normalized['choices'], [
            {'label': 'Leave', 'prompt': 'Leave'},
            {'label': 'Stay', 'prompt': 'Stay'},
        ])
        self.assertIn('Renamed chars to characters', result.fixes)
        self.assertIn('Renamed options to choices', result.fixes)
        self.assertIn('Converted string choices to objects', result.fixes)
        self.assertTrue(any(f.startswith('Normalized character fields') for f in result.fixes))
        self.assertIn('Ignored unknown fields: chars, options', result.warnings)

    def test_canonical_input_is_untouched(self):
        data = {
            'scene': {'background': 'park', 'music': None, 'sfx': None},
            'characters': [_char('Alice', 'happy')],
            'choices': [{'label': 'Go', 'prompt': 'Go home'}],
        }
        result = normalize_schema(data)
        self.assertEqual(result.normalized, data)
        self.assertEqual(result.fixes, [])
        self.assertEqual(result.warnings, [])

    def test_data_envelope(self):
        result = normalize_schema({'data': {'scene': {'bg': 'park'}}})
        self.assertEqual(result.normalized['scene'], {'background': 'park', 'music': None, 'sfx': None})
        self.assertEqual(result.fixes[0], 'Unwrapped data envelope')
        self.assertIn('Normalized scene fields: scene.bg -> background', result.fixes)

    def test_envelope_kept_when_canonical_keys_present(self):
        result = normalize_schema({'data': {'scene': {'background': 'x'}}, 'scene': {'background': 'park'}})
        self.assertNotIn('Unwrapped data envelope', result.fixes)
        self.assertEqual(result.normalized['scene']['background'], 'park')

    def test_scene_envelope(self):
        result = normalize_schema({'vn_scene': {'scene': {'background': 'beach'}}})
        self.assertIn('Unwrapped vn_scene envelope', result.fixes)
        self.assertEqual(result.normalized['scene']['background'], 'beach')

    def test_scene_string_becomes_background(self):
        result = normalize_schema({'scene': 'beach'})
        self.assertEqual(result.normalized['scene']['background'], 'beach')
        self.assertIn('Used scene string as background', result.fixes)

    def test_flat_scene_fields(self):
        result = normalize_schema({'background': 'park', 'music': 'calm', 'characters': []})
        self.assertEqual(result.normalized['scene'], {'background': 'park', 'music': 'calm', 'sfx': None})
        self.assertIn('Collected flat scene fields into scene object', result.fixes)

    def test_combined_name_strings(self):
        result = normalize_schema({'characters': ['Alice (happy)', 'Bob']})
        self.assertEqual(result.normalized['characters'], [_char('Alice', 'happy'), _char('Bob')])
        self.assertIn('Split combined name/expression strings', result.fixes)

    def test_single_character_object(self):
        result = normalize_schema({'character': {'name': 'Eve', 'emotion': 'sad'}})
        self.assertEqual(result.normalized['characters'], [_char('Eve', 'sad')])
        self.assertIn('Wrapped single character object in array', result.fixes)

    def test_characters_keyed_by_name(self):
        result = normalize_schema({'characters': {'Alice': {'expression': 'happy'}, 'Bob': {'mood': 'sad'}}})
        self.assertEqual(result.normalized['characters'], [_char('Alice', 'happy'), _char('Bob', 'sad')])
        self.assertIn('Wrapped non-arrays in arrays', result.fixes)

    def test_label_prompt_split(self):
        result = normalize_schema({'choices': [{'label': 'Run: flee the scene'}]})
        self.assertEqual(result.normalized['choices'], [{'label': 'Run', 'prompt': 'flee the scene'}])
        self.assertIn('Split choice label:prompt format', result.fixes)

    def test_choice_alias_copies_missing_field(self):
        result = normalize_schema({'choices': [{'text': 'Wave', 'description': 'Wave back at her'}, {'text': 'Ignore'}]})
        self.assertEqual(result.normalized['choices'], [
            {'label': 'Wave', 'prompt': 'Wave back at her'},
            {'label': 'Ignore', 'prompt': 'Ignore'},
        ])

    def test_scalars_become_strings(self):
        result = normalize_schema({'scene': {'background': 42}, 'characters': [{'name': 7, 'position': True}]})
        self.assertEqual(result.normalized['scene']['background'], '42')
        self.assertEqual(result.normalized['characters'][0]['name'], '7')
        self.assertEqual(result.normalized['characters'][0]['position'], 'true')
        self.assertIn('Converted non-strings to strings', result.fixes)

    def test_structured_leaves_are_not_stringified(self):
        result = normalize_schema({
            'scene': {'background': {'name': 'park'}},
            'characters': [{'name': {'first': 'Alice'}}, {'name': 'Bob', 'expression': ['sad']}],
        })
        self.assertEqual(result.normalized['scene']['background'], 'park')
        self.assertEqual(result.normalized['characters'], [_char('Bob')])
        self.assertTrue(any('Discarded 2 object/array field value(s)' in w for w in result.warnings))
        self.assertTrue(any('without a name' in w for w in result.warnings))

    def test_nameless_and_duplicate_characters_dropped(self):
        result = normalize_schema({'characters': [{'name': 'Ann'}, {'expression': 'sad'}, {'name': 'ann'}]})
        self.assertEqual(result.normalized['characters'], [_char('Ann')])
        self.assertTrue(any('without a name' in w for w in result.warnings))
        self.assertTrue(any('duplicate' in w for w in result.warnings))

    def test_single_element_array_unwrapped(self):
        result = normalize_schema([{'scene': {'background': 'x'}}])
        self.assertEqual(result.fixes[0], 'Unwrapped single-element array')
        self.assertEqual(result.normalized['scene']['background'], 'x')

    def test_non_object_input(self):
        for value in ('text', 3, None, ['a', 'b']):
            result = normalize_schema(value)
            self.assertIsNone(result.normalized)
            self.assertEqual(result.warnings, ['Input is not an object'])

    def test_custom_step_chain(self):
        result = normalize_schema({'chars': [{'name': 'Bob'}]}, steps=(('find_characters', find_characters),))
        self.assertEqual(result.normalized, {'scene': None, 'characters': [_char('Bob')], 'choices': []})

    def test_step_table(self):
        names = [name for name, _ in SCHEMA_STEPS]
        self.assertEqual(len(names), 17)
        self.assertEqual(names[0], 'unwrap_data_envelope')
        self.assertEqual(names[-1], 'ensure_string_types')


class ValidateNormalizedTest(unittest.TestCase):
    def test_valid_result(self):
        valid, errors = validate_normalized({'scene': None, 'characters': [_char('A')], 'choices': []})
        self.assertTrue(valid)
        self.assertEqual(errors, [])

    def test_invalid_result(self):
        valid, errors = validate_normalized({'scene': None, 'characters': [{'name': 'A'}], 'choices': [], 'x': 1})
        self.assertFalse(valid)
        self.assertTrue(errors)


if __name__ == '__main__':
    unittest.main()
