"""Tests for shared LLM response parsing utilities."""

import pytest
from meetsync.common.llm_utils import clean_date, clean_str, parse_llm_json


class TestParseLlmJson:
    def test_valid_json(self):
        assert parse_llm_json('{"key": "value"}') == {"key": "value"}

    def test_json_with_markdown_fences(self):
        raw = '```json\n{"action": "CREATE", "external_url": "New Task"}\n```'
        result = parse_llm_json(raw)
        assert result == {"action": "CREATE", "external_url": "New Task"}

    def test_json_embedded_in_text(self):
        raw = 'Here is the result: {"key": "value"} and some trailing text.'
        assert parse_llm_json(raw) == {"key": "value"}

    def test_no_json_returns_empty_dict(self):
        assert parse_llm_json("This is not JSON at all") == {}

    def test_empty_string_returns_empty_dict(self):
        assert parse_llm_json("") == {}

    def test_non_object_returns_empty_dict(self):
        assert parse_llm_json('["CREATE"]') == {}

    def test_invalid_json_with_braces_returns_empty(self):
        assert parse_llm_json('{"broken: json') == {}


class TestCleanStr:
    @pytest.mark.parametrize("value,expected", [
        (None, "fallback"),
        ("", "fallback"),
        ("   ", "fallback"),
        ("  Dana ", "Dana"),
        (5, "5"),
    ])
    def test_clean_str(self, value, expected):
        assert clean_str(value, "fallback") == expected


class TestCleanDate:
    @pytest.mark.parametrize("value,expected", [
        ("2025-03-07", "2025-03-07"),
        ("2025-03-07T10:00:00Z", "2025-03-07"),
        ("null", None),
        (None, None),
        ("next Friday", None),
    ])
    def test_clean_date(self, value, expected):
        assert clean_date(value) == expected
