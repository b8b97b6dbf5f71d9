"""Unit tests for the exceptions module.

Covers the ErrorCode and Severity enums, the PactumError base class
(items, headers, fingerprinting, chaining) and the status code each
category exception maps to.
"""

import pytest
import pytest_check

from src.core.exceptions import (
    ConfigurationError,
    ErrorCode,
    ForbiddenError,
    LoadError,
    MalformedBodyError,
    MethodNotAllowedError,
    NotAcceptableError,
    NotFoundError,
    PactumError,
    RequestEntityTooLargeError,
    ResponseValidationError,
    SecurityError,
    Severity,
    UnauthorizedError,
    UnsupportedMediaTypeError,
    ValidationError,
    ValidationErrorItem,
)


@pytest.mark.unit
class TestErrorCode:
    """Test the ErrorCode enum."""

    @pytest.mark.parametrize(
        ("enum_value", "expected_string"),
        [
            (ErrorCode.INTERNAL_ERROR, "INTERNAL_ERROR"),
            (ErrorCode.VALIDATION_ERROR, "VALIDATION_ERROR"),
            (ErrorCode.NOT_FOUND, "NOT_FOUND"),
            (ErrorCode.METHOD_NOT_ALLOWED, "METHOD_NOT_ALLOWED"),
            (ErrorCode.UNSUPPORTED_MEDIA_TYPE, "UNSUPPORTED_MEDIA_TYPE"),
            (ErrorCode.UNAUTHORIZED, "UNAUTHORIZED"),
        ],
    )
    def test_error_code_enum_values(self, enum_value: ErrorCode, expected_string: str) -> None:
        """Verify ErrorCode values equal their names."""
        assert enum_value.value == expected_string

    def test_invalid_error_code(self) -> None:
        """Verify unknown codes are rejected."""
        with pytest.raises(ValueError, match="'NOPE' is not a valid"):
            ErrorCode("NOPE")


@pytest.mark.unit
class TestValidationErrorItem:
    """Test the violation item dataclass."""

    def test_to_dict_includes_code(self) -> None:
        """Verify the code is rendered when present."""
        # Arrange
        item = ValidationErrorItem("body.name", "must be a string", "type.openapi.validation")

        # Act
        rendered = item.to_dict()

        # Assert
        assert rendered == {
            "path": "body.name",
            "message": "must be a string",
            "error_code": "type.openapi.validation",
        }

    def test_to_dict_omits_empty_code(self) -> None:
        """Verify a missing code is not rendered."""
        assert ValidationErrorItem("query.x", "unknown").to_dict() == {
            "path": "query.x",
            "message": "unknown",
        }

    def test_items_are_immutable(self) -> None:
        """Verify items are frozen."""
        item = ValidationErrorItem("body", "bad")
        with pytest.raises(AttributeError):
            item.path = "other"  # type: ignore[misc]


@pytest.mark.unit
class TestPactumError:
    """Test the base exception."""

    def test_defaults(self) -> None:
        """Verify the defaults of the base error."""
        # Arrange & Act
        error = PactumError("boom")

        # Assert
        with pytest_check.check:
            assert error.status_code == 500
        with pytest_check.check:
            assert error.error_code == "INTERNAL_ERROR"
        with pytest_check.check:
            assert error.severity is Severity.MEDIUM
        with pytest_check.check:
            assert error.errors == [ValidationErrorItem(path="", message="boom")]
        with pytest_check.check:
            assert error.headers == {}
        with pytest_check.check:
            assert str(error) == "[INTERNAL_ERROR] boom"

    def test_default_item_uses_path(self) -> None:
        """Verify the single default item carries the given path."""
        error = ValidationError("request body is required", path="body")

        assert error.errors == [
            ValidationErrorItem(path="body", message="request body is required")
        ]

    def test_explicit_items_win(self) -> None:
        """Verify explicit items replace the default one, in order."""
        # Arrange
        items = [
            ValidationErrorItem("query.limit", "too big"),
            ValidationErrorItem("body.name", "missing"),
        ]

        # Act
        error = ValidationError("two problems", path="ignored", errors=items)

        # Assert
        assert error.errors == items

    def test_error_code_override(self) -> None:
        """Verify both enum and string codes override the class default."""
        assert PactumError("x", error_code=ErrorCode.LOAD_ERROR).error_code == "LOAD_ERROR"
        assert PactumError("x", error_code="CUSTOM").error_code == "CUSTOM"

    def test_cause_is_chained(self) -> None:
        """Verify the cause becomes __cause__."""
        # Arrange
        original = ValueError("bad yaml")

        # Act
        error = LoadError("cannot load", cause=original)

        # Assert
        assert error.cause is original
        assert error.__cause__ is original

    def test_fingerprint_is_stable_for_same_location(self) -> None:
        """Verify errors raised from the same place share a fingerprint."""
        fingerprints = {ValidationError("bad").fingerprint for _ in range(3)}

        assert len(fingerprints) == 1
        assert len(fingerprints.pop()) == 16

    def test_fingerprint_differs_by_type(self) -> None:
        """Verify error types are fingerprinted apart."""
        assert NotFoundError("x").fingerprint != ValidationError("x").fingerprint

    @pytest.mark.parametrize(
        ("severity", "expected_expected", "expected_alert"),
        [
            (Severity.LOW, True, False),
            (Severity.MEDIUM, True, False),
            (Severity.HIGH, False, True),
            (Severity.CRITICAL, False, True),
        ],
    )
    def test_severity_properties(
        self, severity: Severity, expected_expected: bool, expected_alert: bool
    ) -> None:
        """Verify is_expected and should_alert follow the severity."""
        error = PactumError("x", severity=severity)

        assert error.is_expected is expected_expected
        assert error.should_alert is expected_alert

    def test_repr_includes_context(self) -> None:
        """Verify repr names the class, code and context."""
        error = ConfigurationError("broken", context={"route": "GET /v1/pets"})

        assert repr(error) == (
            "ConfigurationError(status_code=500, error_code='CONFIGURATION_ERROR', "
            "message='broken', severity=CRITICAL, context={'route': 'GET /v1/pets'})"
        )


@pytest.mark.unit
class TestCategoryErrors:
    """Test the status code and code of each category."""

    @pytest.mark.parametrize(
        ("error", "status_code", "error_code"),
        [
            (NotFoundError("x"), 404, "NOT_FOUND"),
            (UnsupportedMediaTypeError("x"), 415, "UNSUPPORTED_MEDIA_TYPE"),
            (NotAcceptableError("x"), 406, "NOT_ACCEPTABLE"),
            (RequestEntityTooLargeError("x"), 413, "REQUEST_TOO_LARGE"),
            (ValidationError("x"), 400, "VALIDATION_ERROR"),
            (MalformedBodyError("x"), 400, "MALFORMED_BODY"),
            (UnauthorizedError("x"), 401, "UNAUTHORIZED"),
            (ForbiddenError("x"), 403, "FORBIDDEN"),
            (ConfigurationError("x"), 500, "CONFIGURATION_ERROR"),
            (LoadError("x"), 500, "LOAD_ERROR"),
            (ResponseValidationError("x"), 500, "RESPONSE_VALIDATION_ERROR"),
        ],
    )
    def test_status_and_code(self, error: PactumError, status_code: int, error_code: str) -> None:
        """Verify each category maps to its HTTP status and code."""
        assert error.status_code == status_code
        assert error.error_code == error_code

    def test_method_not_allowed_sets_allow_header(self) -> None:
        """Verify 405 errors carry the Allow header and the allowed methods."""
        # Act
        error = MethodNotAllowedError(
            "DELETE method not allowed", path="/v1/pets", allowed=["GET", "POST"]
        )

        # Assert
        assert error.status_code == 405
        assert error.headers == {"Allow": "GET, POST"}
        assert error.allowed == ("GET", "POST")
        assert error.context == {"allowed_methods": ["GET", "POST"]}
        assert error.errors[0].path == "/v1/pets"

    def test_forbidden_is_a_security_error(self) -> None:
        """Verify handlers can raise ForbiddenError as a SecurityError."""
        assert issubclass(ForbiddenError, SecurityError)
        assert ForbiddenError("x").severity is Severity.HIGH
