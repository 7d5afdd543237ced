from __future__ import annotations

import pytest

from deep_research.exceptions import InputValidationError
from deep_research.services.validation import (
    MAX_QUERY_LENGTH,
    contains_sql_injection,
    is_valid_uuid,
    sanitize_string,
    validate_research_input,
)


class TestSanitizeString:
    def test_strips_control_characters_but_keeps_whitespace(self):
        assert sanitize_string("  linen\x00 shirts\x07\n\tcut  ") == "linen shirts\n\tcut"

    def test_truncates(self):
        assert len(sanitize_string("a" * (MAX_QUERY_LENGTH + 50))) == MAX_QUERY_LENGTH

    @pytest.mark.parametrize("value", [None, 42, "", ["q"]])
    def test_non_strings_become_empty(self, value):
        assert sanitize_string(value) == ""


class TestInjection:
    @pytest.mark.parametrize(
        "value",
        [
            "SELECT * FROM users",
            "cotton' OR 1=1",
            "x; DROP TABLE research_tasks",
            "UNION ALL SELECT password",
            "SLEEP(5)",
            "cotton -- comment",
        ],
    )
    def test_detects_patterns(self, value):
        assert contains_sql_injection(value)

    @pytest.mark.parametrize(
        "value",
        ["organic cotton suppliers in Portugal", "SS25 runway color palette", "denim market size 2025"],
    )
    def test_allows_ordinary_queries(self, value):
        assert not contains_sql_injection(value)


def test_uuid_check():
    assert is_valid_uuid("3f2b8c1e-9d4a-4f6b-8a2e-1c3d5e7f9a0b")
    assert not is_valid_uuid("not-a-uuid")
    assert not is_valid_uuid(None)


class TestValidateResearchInput:
    def test_returns_sanitized_query(self):
        assert validate_research_input("  organic cotton\x00  ") == "organic cotton"

    @pytest.mark.parametrize(
        "query, message",
        [
            (None, "Invalid query"),
            (123, "Invalid query"),
            ("", "Invalid query"),
            ("   \x00  ", "Query cannot be empty"),
        ],
    )
    def test_rejects_empty_or_wrong_type(self, query, message):
        with pytest.raises(InputValidationError) as exc_info:
            validate_research_input(query)
        assert exc_info.value.message == message

    def test_rejects_injection_as_security_event(self):
        with pytest.raises(InputValidationError) as exc_info:
            validate_research_input("cotton' OR 1=1", user_id="u1")
        assert exc_info.value.message == "Invalid characters detected in query"
        assert exc_info.value.security_event is True

    def test_rejects_bad_conversation_id(self):
        with pytest.raises(InputValidationError) as exc_info:
            validate_research_input("cotton", "12345")
        assert exc_info.value.message == "Invalid conversation ID format"

    def test_accepts_valid_conversation_id(self):
        assert validate_research_input("cotton", "3f2b8c1e-9d4a-4f6b-8a2e-1c3d5e7f9a0b") == "cotton"
