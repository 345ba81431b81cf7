"""Unit tests for JSON recovery from free-form model output."""

from __future__ import annotations

import unittest

from app.ai.response_recovery import (
    NoStructureFound,
    ResponseParseError,
    extract_structured_payload,
    parse_structured_response,
    repair_syntax,
)


class ExtractStructuredPayloadTests(unittest.TestCase):
    def test_prefers_fenced_block_over_preceding_brackets(self) -> None:
        text = 'Notes [draft]\n```json\n{"a": 1}\n```\n'
        self.assertEqual(extract_structured_payload(text), '{"a": 1}')

    def test_fence_without_language_tag(self) -> None:
        text = "Here:\n```\n[1, 2]\n```"
        self.assertEqual(extract_structured_payload(text), "[1, 2]")

    def test_scans_to_matching_closer_ignoring_brackets_in_strings(self) -> None:
        text = 'Result: [{"title": "The ] tower"}] trailing prose [x]'
        self.assertEqual(extract_structured_payload(text), '[{"title": "The ] tower"}]')

    def test_object_before_array_wins(self) -> None:
        text = 'prefix {"items": [1]} and [2]'
        self.assertEqual(extract_structured_payload(text), '{"items": [1]}')

    def test_unterminated_structure_returns_rest_of_input(self) -> None:
        text = 'Sure: [{"a": 1}, {"b": 2}'
        self.assertEqual(extract_structured_payload(text), '[{"a": 1}, {"b": 2}')

    def test_no_structure_raises(self) -> None:
        with self.assertRaises(NoStructureFound):
            extract_structured_payload("I could not classify these notes.")


class RepairSyntaxTests(unittest.TestCase):
    def test_valid_json_is_unchanged(self) -> None:
        payload = '{"a": [1, 2], "b": "x, y", "c": null}'
        self.assertEqual(repair_syntax(payload), payload)

    def test_escapes_raw_newline_inside_string(self) -> None:
        self.assertEqual(repair_syntax('{"a": "line1\nline2"}'), '{"a": "line1\\nline2"}')

    def test_escapes_inner_quote_not_followed_by_closer(self) -> None:
        self.assertEqual(repair_syntax('{"a": "He said "hi" loudly"}'), '{"a": "He said \\"hi\\" loudly"}')

    def test_removes_trailing_commas(self) -> None:
        self.assertEqual(repair_syntax('[1, 2, ]'), "[1, 2 ]")
        self.assertEqual(repair_syntax('{"a": 1,\n}'), '{"a": 1\n}')

    def test_trailing_comma_inside_string_is_kept(self) -> None:
        self.assertEqual(repair_syntax('{"a": "x,]"}'), '{"a": "x,]"}')

    def test_inserts_missing_comma_between_properties(self) -> None:
        self.assertEqual(repair_syntax('{"a": 1\n"b": 2}'), '{"a": 1,\n"b": 2}')

    def test_inserts_missing_comma_after_string_value(self) -> None:
        self.assertEqual(repair_syntax('{"a": "x"\n"b": 1}'), '{"a": "x",\n"b": 1}')

    def test_quote_before_next_line_prose_is_still_escaped(self) -> None:
        self.assertEqual(repair_syntax('{"a": "say "\n"hi" ok"}'), '{"a": "say \\"\\n\\"hi\\" ok"}')


class ParseStructuredResponseTests(unittest.TestCase):
    def test_parses_prose_wrapped_array(self) -> None:
        result = parse_structured_response('Here are the results: [{"noteId": "n1"}] Hope this helps!')
        self.assertEqual(result, [{"noteId": "n1"}])

    def test_repairs_combined_defects(self) -> None:
        text = '```json\n[\n  {"noteId": "n1", "explanation": "Talks about "Mira"\nand her ship"},\n  {"noteId": "n2",},\n]\n```'
        result = parse_structured_response(text)
        self.assertEqual(
            result,
            [
                {"noteId": "n1", "explanation": 'Talks about "Mira"\nand her ship'},
                {"noteId": "n2"},
            ],
        )

    def test_recovers_string_value_missing_its_comma(self) -> None:
        text = '[{"noteId": "n1",\n"inferredType": "Area"\n"confidence": 0.9}]'
        result = parse_structured_response(text)
        self.assertEqual(result, [{"noteId": "n1", "inferredType": "Area", "confidence": 0.9}])

    def test_unrepairable_payload_raises_with_excerpt(self) -> None:
        text = "[{: 1}" + ("x" * 800)
        with self.assertRaises(ResponseParseError) as ctx:
            parse_structured_response(text)
        self.assertEqual(len(ctx.exception.excerpt), 500)
        self.assertTrue(text.startswith(ctx.exception.excerpt))

    def test_no_structure_propagates(self) -> None:
        with self.assertRaises(NoStructureFound):
            parse_structured_response("no json here")


if __name__ == "__main__":
    unittest.main()
