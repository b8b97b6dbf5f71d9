"""Centralized configuration management with environment-aware defaults.

This module implements the configuration system using Pydantic Settings,
providing type-safe configuration for the application shell and for the
contract validation engine.

Features:
- **Type safety**: All configuration values are validated and typed
- **Environment variables**: Supports .env files and environment overrides
- **Nested configuration**: Uses __ delimiter for complex config structures
  (e.g. ``VALIDATOR_CONFIG__REQUEST__ALL_ERRORS=true``)
- **Caching**: Configuration is cached for performance

Configuration sources (in order of precedence):
1. Environment variables
2. .env file in project root
3. Default values in model definitions
"""

import os
import re
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogConfig(BaseModel):
    """Logging configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_formatter_type: Literal["console", "json"] | None = Field(
        default=None,
        description="Log output formatter. Auto-detected if not specified.",
    )
    sensitive_fields: list[str] = Field(
        default_factory=lambda: [
            "password",
            "token",
            "secret",
            "api_key",
            "authorization",
        ],
        description="Field names to redact",
    )


class RequestValidationConfig(BaseModel):
    """Options for validating incoming requests."""

    enabled: bool = Field(default=True, description="Validate requests")
    allow_unknown_query_parameters: bool = Field(
        default=False,
        description="Accept query parameters the operation does not declare",
    )
    coerce_types: bool | Literal["array"] = Field(
        default=False,
        description=(
            "Coerce body values to the declared types; 'array' also wraps "
            "scalars into one-element arrays. Parameters are always coerced."
        ),
    )
    remove_additional: bool | Literal["all", "failing"] = Field(
        default=False,
        description="Prune undeclared body properties before validation",
    )
    all_errors: bool = Field(
        default=False,
        description="Collect every violation instead of stopping at the first",
    )
    max_body_size: int | None = Field(
        default=None,
        ge=0,
        description="Maximum accepted request body size in bytes",
    )


class ResponseValidationConfig(BaseModel):
    """Options for validating outgoing responses."""

    enabled: bool = Field(default=False, description="Validate responses")
    all_errors: bool = Field(
        default=False,
        description="Collect every violation instead of stopping at the first",
    )


class SecurityValidationConfig(BaseModel):
    """Options for evaluating security requirements."""

    enabled: bool = Field(default=True, description="Evaluate security requirements")


class ValidatorConfig(BaseModel):
    """Contract validation engine configuration."""

    api_spec: str | None = Field(
        default=None,
        description="Path to the OpenAPI document (YAML or JSON)",
    )
    ignore_paths: str | None = Field(
        default=None,
        description="Regex of request paths that bypass routing and validation",
    )
    ignore_undocumented: bool = Field(
        default=False,
        description="Pass through requests whose path matches no documented template",
    )
    validate_api_spec: bool = Field(
        default=True,
        description="Validate the document against the OpenAPI schema when it is loaded",
    )
    validate_formats: bool = Field(
        default=True,
        description="Check 'format' keywords the schema dialect knows about",
    )
    request: RequestValidationConfig = Field(default_factory=RequestValidationConfig)
    response: ResponseValidationConfig = Field(default_factory=ResponseValidationConfig)
    security: SecurityValidationConfig = Field(default_factory=SecurityValidationConfig)

    @field_validator("api_spec", "ignore_paths", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: str | None) -> str | None:
        """Convert empty strings to None for nullable fields."""
        if v == "":
            return None
        return v

    @field_validator("ignore_paths", mode="after")
    @classmethod
    def validate_ignore_paths(cls, v: str | None) -> str | None:
        """Reject patterns that are not valid regular expressions."""
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                msg = f"ignore_paths is not a valid regular expression: {e}"
                raise ValueError(msg) from e
        return v


class Settings(BaseSettings):
    """Main settings class for the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        env_nested_delimiter="__",
    )

    # Application settings
    app_name: str = Field(default="Pactum", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Environment the application is running in",
    )
    debug: bool = Field(default=True, description="Debug mode flag")

    # API settings
    api_host: str = Field(default="127.0.0.1", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Logging configuration
    log_config: LogConfig = Field(
        default_factory=LogConfig, description="Logging configuration"
    )

    # Contract validation configuration
    validator_config: ValidatorConfig = Field(
        default_factory=ValidatorConfig, description="Contract validation configuration"
    )

    def model_post_init(self, __context: object) -> None:
        """Post initialization to set environment-based defaults."""
        super().model_post_init(__context)

        if self.log_config.log_formatter_type is None:
            self.log_config.log_formatter_type = self._detect_formatter()

    def _detect_formatter(self) -> Literal["console", "json"]:
        """Auto-detect log formatter based on environment."""
        # Container platforms collect structured stdout
        if os.getenv("K_SERVICE") or os.getenv("AWS_EXECUTION_ENV"):
            return "json"
        if self.environment == "development":
            return "console"
        return "json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
