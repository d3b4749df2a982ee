"""Tests for JSON reply parsing."""

import pytest

from lifestory.ai.parsing import (
    ResponseParseError,
    parse_json,
    parse_json_array,
    parse_json_object,
    strip_code_fences,
)


class TestStripCodeFences:
    """Tests for strip_code_fences."""

    def test_json_fence(self):
        assert strip_code_fences('```json\n[1, 2]\n```') == "[1, 2]"

    def test_bare_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestParseJson:
    """Tests for parse_json and its typed variants."""

    def test_embedded_in_prose(self):
        """JSON wrapped in a sentence is still found."""
        assert parse_json('Here you go: {"title": "X"} Enjoy!') == {"title": "X"}

    def test_invalid(self):
        with pytest.raises(ResponseParseError):
            parse_json("definitely not json")

    def test_parse_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_json("{broken")

    def test_array_with_expected_length(self):
        assert parse_json_array('```json\n[{"a": 1}, {"a": 2}]\n```', expected_length=2) == [{"a": 1}, {"a": 2}]

    def test_array_length_mismatch(self):
        with pytest.raises(ResponseParseError, match="Expected 3 items, got 2"):
            parse_json_array("[1, 2]", expected_length=3)

    def test_array_rejects_object(self):
        with pytest.raises(ResponseParseError, match="Expected a JSON array"):
            parse_json_array('{"a": 1}')

    def test_object_rejects_array(self):
        with pytest.raises(ResponseParseError, match="Expected a JSON object"):
            parse_json_object("[1]")
