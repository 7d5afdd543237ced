"""Pre-flight input checks for research requests."""
from __future__ import annotations

import re
from typing import Any, Optional

from deep_research.exceptions import InputValidationError
from deep_research.services.logger import log_security_event

MAX_QUERY_LENGTH = 5000

SQL_INJECTION_PATTERNS = [
    re.compile(
        r"(\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|TRUNCATE|EXEC|EXECUTE|UNION|FROM|WHERE|OR|AND)\b.*\b(FROM|INTO|TABLE|DATABASE|SET|VALUES)\b)",
        re.IGNORECASE,
    ),
    re.compile(r"(\-\-|/\*|\*/|;|\bOR\b\s+\d+\s*=\s*\d+|\bAND\b\s+\d+\s*=\s*\d+)", re.IGNORECASE),
    re.compile(r"(\bOR\b\s*['\"]?\d+['\"]?\s*=\s*['\"]?\d+['\"]?)", re.IGNORECASE),
    re.compile(r"(\b(SLEEP|BENCHMARK|WAITFOR|DELAY)\s*\()", re.IGNORECASE),
    re.compile(r"(CHAR\s*\(|CONCAT\s*\(|SUBSTRING\s*\()", re.IGNORECASE),
    re.compile(r"(\bINTO\s+(OUTFILE|DUMPFILE)\b)", re.IGNORECASE),
    re.compile(r"(\bUNION\s+(ALL\s+)?SELECT\b)", re.IGNORECASE),
]

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def sanitize_string(value: Any, max_length: int = MAX_QUERY_LENGTH) -> str:
    """Truncate, strip NUL/control characters (tab, LF, CR survive) and trim."""
    if not value or not isinstance(value, str):
        return ""
    sanitized = value[:max_length]
    sanitized = _CONTROL_CHARS.sub("", sanitized)
    return sanitized.strip()


def contains_sql_injection(value: str) -> bool:
    if not value or not isinstance(value, str):
        return False
    normalized = re.sub(r"\s+", " ", value).strip()
    return any(pattern.search(normalized) for pattern in SQL_INJECTION_PATTERNS)


def is_valid_uuid(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    return bool(_UUID_RE.match(value))


def validate_research_input(
    query: Any,
    conversation_id: Optional[str] = None,
    *,
    user_id: str = "",
) -> str:
    """Return the sanitized query or raise InputValidationError."""
    if not query or not isinstance(query, str):
        log_security_event("validation_error", field="query", user_id=user_id, reason="invalid_type")
        raise InputValidationError("Invalid query")

    sanitized = sanitize_string(query, MAX_QUERY_LENGTH)
    if not sanitized:
        raise InputValidationError("Query cannot be empty")

    if contains_sql_injection(sanitized):
        log_security_event(
            "injection_attempt",
            type="sql",
            user_id=user_id,
            query_length=len(sanitized),
        )
        raise InputValidationError("Invalid characters detected in query", security_event=True)

    if conversation_id and not is_valid_uuid(conversation_id):
        log_security_event(
            "validation_error", field="conversationId", user_id=user_id, reason="invalid_uuid"
        )
        raise InputValidationError("Invalid conversation ID format", security_event=True)

    return sanitized
