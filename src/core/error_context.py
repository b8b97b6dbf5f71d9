"""Sensitive data sanitization for contract violation logging.

Validation errors echo parts of the request back (header values, body
fields, security reasons). Before any of that reaches a log line it passes
through this module, which redacts values whose field or header name looks
sensitive.

Key features:
- **Pattern matching**: Regex-based detection of sensitive field names
- **Configurable fields**: Additional sensitive fields via configuration
- **Deep sanitization**: Recursive handling of nested data structures
- **Header protection**: Special handling for sensitive HTTP headers
"""

from __future__ import annotations

import re
from functools import lru_cache
from re import Pattern
from typing import Any, Final

from src.core.config import get_settings
from src.core.constants import REDACTED
from src.core.exceptions import PactumError

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "x-api-key",
        "x-auth-token",
        "x-csrf-token",
        "set-cookie",
        "proxy-authorization",
    }
)

DEFAULT_SENSITIVE_PATTERN: Final[Pattern[str]] = re.compile(
    r"(password|passwd|pwd|secret|token|api[_-]?key|apikey|auth|authorization|"
    r"credential|private[_-]?key|access[_-]?key|session|cookie|"
    r"ssn|pin|cvv|cvc|card[_-]?number)",
    re.IGNORECASE,
)

# Maximum depth for nested structure sanitization
MAX_DEPTH: Final[int] = 10


@lru_cache(maxsize=1)
def _get_sensitive_fields() -> tuple[str, ...]:
    """Get the configured sensitive fields from settings."""
    return tuple(f.lower() for f in get_settings().log_config.sensitive_fields)


def is_sensitive_field(field_name: str) -> bool:
    """Check if a field name indicates sensitive data.

    Args:
        field_name: The field name to check.

    Returns:
        bool: True if the field appears to contain sensitive data.
    """
    if DEFAULT_SENSITIVE_PATTERN.search(field_name):
        return True
    field_lower = field_name.lower()
    return any(field in field_lower for field in _get_sensitive_fields())


def is_sensitive_header(header_name: str) -> bool:
    """Check if a header name is sensitive (case-insensitive)."""
    return header_name.lower() in SENSITIVE_HEADERS


def sanitize_value(value: Any, field_name: str = "", depth: int = 0) -> Any:  # noqa: ANN401 - arbitrary JSON
    """Redact a value if its field name looks sensitive, recursing into containers.

    Args:
        value: The value to potentially sanitize.
        field_name: The field name for context.
        depth: Current recursion depth.

    Returns:
        Any: Sanitized value, or the original if nothing was sensitive.
    """
    if depth > MAX_DEPTH:
        return REDACTED
    if field_name and is_sensitive_field(field_name):
        return REDACTED
    if isinstance(value, dict):
        return {k: sanitize_value(v, str(k), depth + 1) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [sanitize_value(item, "", depth + 1) for item in value]
    return value


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Redact sensitive HTTP header values."""
    return {k: REDACTED if is_sensitive_header(k) else v for k, v in headers.items()}


def _sanitize_item_path(path: str) -> bool:
    """Whether any segment of a dotted error path names a sensitive field."""
    return any(is_sensitive_field(part) for part in path.split(".")[1:])


def sanitize_error_context(
    error: Exception, context: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Create sanitized error context for logging.

    For contract errors, the violation items are included with messages
    redacted when they point at a sensitive field (messages usually quote
    the offending value).

    Args:
        error: The exception to create context for.
        context: Additional context to include (will be sanitized).

    Returns:
        dict[str, Any]: Sanitized error context safe for logging.
    """
    error_context: dict[str, Any] = {"error_type": type(error).__name__}

    if isinstance(error, PactumError):
        error_context["error_code"] = error.error_code
        error_context["fingerprint"] = error.fingerprint
        error_context["violations"] = [
            {
                "path": item.path,
                "message": REDACTED if _sanitize_item_path(item.path) else item.message,
            }
            for item in error.errors
        ]
        if error.context:
            error_context["error_context"] = sanitize_value(error.context)
    else:
        error_context["error_message"] = str(error)

    if context:
        error_context.update(
            {key: sanitize_value(value, key) for key, value in context.items()}
        )

    return error_context
