"""Structured exception hierarchy for contract enforcement.

This module defines every error the Pactum engine can raise, from routing
misses to security denials and fatal configuration problems. Each exception
knows the HTTP status it maps to and carries a list of
``ValidationErrorItem`` objects so the API layer can render a single,
consistent error body.

Key components:
- **ErrorCode enum**: Standardized error identifiers for programmatic handling
- **Severity enum**: Error classification for monitoring and alerting
- **PactumError**: Base exception with status, items, context and fingerprinting
- **Category exceptions**: Routing, media type, validation, security,
  configuration and load failures

Per-request errors (routing, media type, validation, security) are always
surfaced to the client. Configuration and load errors are fatal for the
validation capability and are never retried.
"""

import hashlib
import traceback
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar


class ErrorCode(Enum):
    """Standardized error codes for the Pactum engine."""

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    """An unexpected internal error occurred."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """The contract or the validator options are malformed."""

    LOAD_ERROR = "LOAD_ERROR"
    """The API document could not be loaded or dereferenced."""

    RESPONSE_VALIDATION_ERROR = "RESPONSE_VALIDATION_ERROR"
    """A response produced by the server violates the contract."""

    # Request errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Request parameters or body violate the contract."""

    MALFORMED_BODY = "MALFORMED_BODY"
    """The request body could not be parsed for its content type."""

    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    """The request body exceeds the configured size limit."""

    # Routing errors
    NOT_FOUND = "NOT_FOUND"
    """No documented path matches the request."""

    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    """The path is documented, but not for the request method."""

    # Media type errors
    UNSUPPORTED_MEDIA_TYPE = "UNSUPPORTED_MEDIA_TYPE"
    """The request content type is not declared by the operation."""

    NOT_ACCEPTABLE = "NOT_ACCEPTABLE"
    """None of the operation's response media types are acceptable."""

    # Authentication/Authorization errors
    UNAUTHORIZED = "UNAUTHORIZED"
    """No security requirement of the operation was satisfied."""

    FORBIDDEN = "FORBIDDEN"
    """Credentials were recognized but lack the required permissions."""


class Severity(Enum):
    """Severity levels used for logging and alerting decisions."""

    LOW = "LOW"
    """Client mistakes that are part of normal operation."""

    MEDIUM = "MEDIUM"
    """Unusual but recoverable conditions."""

    HIGH = "HIGH"
    """Security denials and server-side contract violations."""

    CRITICAL = "CRITICAL"
    """The validation capability itself is broken."""


@dataclass(frozen=True, slots=True)
class ValidationErrorItem:
    """A single violation with a locator into the offending instance.

    Attributes:
        path: Dotted locator starting with the location, e.g. ``body.name``.
        message: Human-readable description of the violation.
        error_code: Optional machine-readable code, e.g. ``type.openapi.validation``.
    """

    path: str
    message: str
    error_code: str | None = None

    def to_dict(self) -> dict[str, str]:
        """Return the item as a JSON-ready dictionary, omitting empty codes."""
        item = {"path": self.path, "message": self.message}
        if self.error_code:
            item["error_code"] = self.error_code
        return item


class PactumError(Exception):
    """Base exception for every error raised by the contract engine.

    Args:
        message: Human-readable error message
        path: Locator of the offending request part (used for the default item)
        errors: Explicit violation items; defaults to one item built from
            ``path`` and ``message``
        headers: Extra response headers (e.g. ``Allow`` for 405)
        error_code: Overrides the class default error code
        severity: Overrides the class default severity
        context: Additional context information about the error
        cause: The original exception that caused this error
    """

    status_code: ClassVar[int] = 500
    default_error_code: ClassVar[ErrorCode] = ErrorCode.INTERNAL_ERROR
    default_severity: ClassVar[Severity] = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        errors: Sequence[ValidationErrorItem] | None = None,
        headers: dict[str, str] | None = None,
        error_code: str | ErrorCode | None = None,
        severity: Severity | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        code = error_code or self.default_error_code
        self.error_code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.path = path
        self.errors: list[ValidationErrorItem] = (
            list(errors)
            if errors
            else [ValidationErrorItem(path=path or "", message=message)]
        )
        self.headers = headers or {}
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.cause = cause

        # Capture stack trace at creation time, excluding this frame
        self.stack_trace = traceback.format_stack()[:-1]
        self.fingerprint = self._generate_fingerprint()

        super().__init__(message)
        if cause:
            self.__cause__ = cause

    def _generate_fingerprint(self) -> str:
        """Hash the error type, code and raising location for log grouping.

        Returns:
            str: A 16 character hex digest.
        """
        max_frames = 5
        fingerprint_data = f"{self.__class__.__name__}:{self.error_code}"
        for frame in self.stack_trace[-max_frames:]:
            if "site-packages" not in frame and "src/" in frame:
                fingerprint_data += f":{frame.strip().splitlines()[0]}"
        return hashlib.sha256(fingerprint_data.encode()).hexdigest()[:16]

    @property
    def is_expected(self) -> bool:
        """Whether the error is part of normal operation (LOW or MEDIUM severity)."""
        return self.severity in (Severity.LOW, Severity.MEDIUM)

    @property
    def should_alert(self) -> bool:
        """Whether the error indicates a problem that needs attention."""
        return self.severity in (Severity.HIGH, Severity.CRITICAL)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        context_str = f", context={self.context}" if self.context else ""
        return (
            f"{class_name}(status_code={self.status_code}, "
            f"error_code='{self.error_code}', message='{self.message}', "
            f"severity={self.severity.value}{context_str})"
        )


class RoutingError(PactumError):
    """The request does not map to a documented operation."""

    status_code = 404
    default_error_code = ErrorCode.NOT_FOUND
    default_severity = Severity.LOW


class NotFoundError(RoutingError):
    """No documented path template matches the request path."""


class MethodNotAllowedError(RoutingError):
    """The path is documented, but not for the request method.

    Args:
        message: Description of the mismatch
        path: The request path
        allowed: Methods documented for the matching path template
    """

    status_code = 405
    default_error_code = ErrorCode.METHOD_NOT_ALLOWED

    def __init__(self, message: str, *, path: str, allowed: Sequence[str]) -> None:
        self.allowed = tuple(allowed)
        super().__init__(
            message,
            path=path,
            headers={"Allow": ", ".join(self.allowed)},
            context={"allowed_methods": list(self.allowed)},
        )


class MediaTypeError(PactumError):
    """The negotiated media type is not acceptable for the operation."""

    status_code = 415
    default_error_code = ErrorCode.UNSUPPORTED_MEDIA_TYPE
    default_severity = Severity.LOW


class UnsupportedMediaTypeError(MediaTypeError):
    """The request content type is not declared for the request body."""


class NotAcceptableError(MediaTypeError):
    """The request's Accept header excludes every documented response type."""

    status_code = 406
    default_error_code = ErrorCode.NOT_ACCEPTABLE


class RequestEntityTooLargeError(PactumError):
    """The request body exceeds the configured maximum size."""

    status_code = 413
    default_error_code = ErrorCode.REQUEST_TOO_LARGE
    default_severity = Severity.LOW


class ValidationError(PactumError):
    """Request parameters or body violate the contract.

    Carries one ``ValidationErrorItem`` per violation, in the order they
    were found.
    """

    status_code = 400
    default_error_code = ErrorCode.VALIDATION_ERROR
    default_severity = Severity.LOW


class MalformedBodyError(ValidationError):
    """The request body could not be parsed for its declared content type."""

    default_error_code = ErrorCode.MALFORMED_BODY


class SecurityError(PactumError):
    """No security requirement of the operation was satisfied."""

    status_code = 401
    default_error_code = ErrorCode.UNAUTHORIZED
    default_severity = Severity.HIGH


class UnauthorizedError(SecurityError):
    """Credentials are missing or were rejected."""


class ForbiddenError(SecurityError):
    """Credentials were recognized but are not sufficient (e.g. missing scope)."""

    status_code = 403
    default_error_code = ErrorCode.FORBIDDEN


class ConfigurationError(PactumError):
    """The contract or the validator options are malformed.

    Raised at setup time (or at first compilation of a route) and never
    retried.
    """

    default_error_code = ErrorCode.CONFIGURATION_ERROR
    default_severity = Severity.CRITICAL


class LoadError(PactumError):
    """The API document failed to load or dereference.

    Cached as a permanent failure of the validation capability.
    """

    default_error_code = ErrorCode.LOAD_ERROR
    default_severity = Severity.CRITICAL


class ResponseValidationError(PactumError):
    """A response body produced by the server violates the contract."""

    default_error_code = ErrorCode.RESPONSE_VALIDATION_ERROR
    default_severity = Severity.HIGH
