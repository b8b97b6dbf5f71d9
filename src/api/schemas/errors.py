"""Standardized error response schemas for contract violations.

Every error the validator middleware produces (routing misses, media type
mismatches, schema violations, security denials, broken contracts) is
rendered with these models, so clients see one body shape for all of them.

Key models:
- **ErrorItem**: One violation with a dotted locator such as ``body.name``
- **ErrorResponse**: Status, code, message, violations and tracing metadata
- **ServiceInfo**: Service identification for multi-service debugging
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class ServiceInfo(BaseModel):
    """Service information for error context."""

    name: str = Field(
        ...,
        description="Name of the service",
        examples=["Pactum", "PetStore"],
    )

    version: str = Field(
        ...,
        description="Version of the service",
        examples=["0.1.0", "1.2.3"],
    )

    environment: str = Field(
        ...,
        description="Environment where the service is running",
        examples=["development", "staging", "production"],
    )


class ErrorItem(BaseModel):
    """A single contract violation."""

    path: str = Field(
        ...,
        description="Locator of the offending value, starting with its location",
        examples=["body.name", "query.limit", "headers.x-request-id"],
    )

    message: str = Field(
        ...,
        description="Human-readable description of the violation",
        examples=["123 is not of type 'string'"],
    )

    error_code: str | None = Field(
        default=None,
        description="Machine-readable violation code",
        examples=["type.openapi.validation"],
    )


class ErrorResponse(BaseModel):
    """Standardized error response model for contract errors."""

    status: int = Field(
        ...,
        description="HTTP status code of the response",
        examples=[400, 404, 405],
    )

    error_code: str = Field(
        ...,
        description="Unique error code identifying the error type",
        examples=["VALIDATION_ERROR", "NOT_FOUND", "METHOD_NOT_ALLOWED"],
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["body.name 123 is not of type 'string'", "not found"],
    )

    errors: list[ErrorItem] = Field(
        default_factory=list,
        description="Individual violations, in the order they were found",
    )

    details: dict[str, Any] | None = Field(
        default=None,
        description="Additional error details (e.g. the allowed methods)",
        examples=[{"allowed_methods": ["GET", "POST"]}],
    )

    correlation_id: str | None = Field(
        default=None,
        description="Request correlation ID for tracing and debugging",
        examples=["550e8400-e29b-41d4-a716-446655440000"],
    )

    request_id: str | None = Field(
        default=None,
        description="Unique identifier of this error response",
        examples=["req-550e8400-e29b-41d4-a716-446655440000"],
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when the error occurred (with timezone)",
        examples=["2024-06-14T12:00:00+00:00"],
    )

    severity: str | None = Field(
        default=None,
        description="Error severity level (LOW, MEDIUM, HIGH, CRITICAL)",
        examples=["LOW", "HIGH"],
    )

    service_info: ServiceInfo | None = Field(
        default=None,
        description="Information about the service that generated the error",
    )

    debug_info: dict[str, Any] | None = Field(
        default=None,
        description="Debug information (only populated in development environments)",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": 400,
                    "error_code": "VALIDATION_ERROR",
                    "message": "body.name 123 is not of type 'string'",
                    "errors": [
                        {
                            "path": "body.name",
                            "message": "123 is not of type 'string'",
                            "error_code": "type.openapi.validation",
                        }
                    ],
                    "correlation_id": "550e8400-e29b-41d4-a716-446655440000",
                    "timestamp": "2024-06-14T12:00:00+00:00",
                    "severity": "LOW",
                },
                {
                    "status": 405,
                    "error_code": "METHOD_NOT_ALLOWED",
                    "message": "DELETE method not allowed",
                    "errors": [{"path": "/v1/pets", "message": "DELETE method not allowed"}],
                    "details": {"allowed_methods": ["GET", "POST"]},
                    "timestamp": "2024-06-14T12:00:01+00:00",
                    "severity": "LOW",
                },
            ]
        }
    }
