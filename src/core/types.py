"""Type aliases for dynamic data structures throughout the application.

OpenAPI documents, schemas and request payloads are untyped JSON-like
trees; the aliases below give those trees names so signatures state what
kind of tree they expect.
"""

from collections.abc import Awaitable, Callable
from typing import Any

# JSON-compatible type that represents any valid JSON value
type JsonValue = (
    dict[str, "JsonValue"] | list["JsonValue"] | str | int | float | bool | None
)

# A fully dereferenced OpenAPI document
type ApiSpec = dict[str, Any]

# One schema node; boolean schemas are allowed by OpenAPI 3.1
type Schema = dict[str, Any] | bool

# Context dictionary for error details and debugging information
type ErrorContext = dict[str, Any]

# Security handler: (request, scopes, scheme definition) -> bool | Awaitable[bool]
type SecurityHandler = Callable[
    [Any, list[str], dict[str, Any]], bool | Awaitable[bool]
]

# Custom format check: False or ValueError marks a value as invalid
type FormatCheck = Callable[[Any], bool]

# Predicate deciding whether a request path bypasses the engine
type PathPredicate = Callable[[str], bool]
