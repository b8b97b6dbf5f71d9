"""Root conftest.py for the Pactum test suite.

This file contains project-wide fixtures and pytest configuration: the
sample Pets contract most tests validate against, log capture, and the
isolation of cached settings and request context between tests.
"""

from collections.abc import Generator
from typing import Any

import pytest
from loguru import logger

from src.core.config import get_settings
from src.core.context import RequestContext
from src.core.error_context import _get_sensitive_fields
from src.core.logging import _state


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that test individual components in isolation"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that test multiple components"
    )


def _pet_ref() -> dict[str, str]:
    return {"$ref": "#/components/schemas/Pet"}


@pytest.fixture
def pets_spec() -> dict[str, Any]:
    """Provide a fresh OpenAPI 3.0 document describing a small pet store.

    Returns:
        dict[str, Any]: A parsed, not yet dereferenced document.
    """
    return {
        "openapi": "3.0.3",
        "info": {"title": "Pets", "version": "1.0.0"},
        "servers": [{"url": "/v1"}],
        "paths": {
            "/pets": {
                "get": {
                    "operationId": "listPets",
                    "parameters": [
                        {
                            "name": "limit",
                            "in": "query",
                            "schema": {"type": "integer", "minimum": 1, "maximum": 100},
                        },
                        {
                            "name": "tags",
                            "in": "query",
                            "schema": {"type": "array", "items": {"type": "string"}},
                        },
                    ],
                    "responses": {
                        "200": {
                            "description": "A list of pets",
                            "content": {
                                "application/json": {
                                    "schema": {"type": "array", "items": _pet_ref()}
                                }
                            },
                        }
                    },
                },
                "post": {
                    "operationId": "createPet",
                    "requestBody": {
                        "required": True,
                        "content": {"application/json": {"schema": _pet_ref()}},
                    },
                    "responses": {
                        "201": {
                            "description": "Created",
                            "content": {"application/json": {"schema": _pet_ref()}},
                        }
                    },
                },
            },
            "/pets/{petId}": {
                "parameters": [
                    {
                        "name": "petId",
                        "in": "path",
                        "required": True,
                        "schema": {"type": "integer"},
                    }
                ],
                "get": {
                    "operationId": "getPet",
                    "responses": {
                        "200": {
                            "description": "A pet",
                            "content": {"application/json": {"schema": _pet_ref()}},
                        },
                        "default": {
                            "description": "Error",
                            "content": {
                                "application/json": {
                                    "schema": {"$ref": "#/components/schemas/Error"}
                                }
                            },
                        },
                    },
                },
                "delete": {
                    "operationId": "deletePet",
                    "security": [{"apiKey": []}, {"bearerAuth": ["pets:write"]}],
                    "responses": {"204": {"description": "Deleted"}},
                },
            },
            "/animals": {
                "post": {
                    "operationId": "createAnimal",
                    "requestBody": {
                        "required": True,
                        "content": {
                            "application/json": {
                                "schema": {"$ref": "#/components/schemas/Animal"}
                            }
                        },
                    },
                    "responses": {"201": {"description": "Created"}},
                }
            },
        },
        "components": {
            "schemas": {
                "Pet": {
                    "type": "object",
                    "required": ["id", "name"],
                    "properties": {
                        "id": {"type": "integer", "readOnly": True},
                        "name": {"type": "string"},
                        "tag": {"type": "string", "nullable": True},
                        "born": {"type": "string", "format": "date"},
                    },
                },
                "Error": {
                    "type": "object",
                    "required": ["code", "message"],
                    "properties": {
                        "code": {"type": "integer"},
                        "message": {"type": "string"},
                    },
                },
                "Cat": {
                    "type": "object",
                    "required": ["petType", "meows"],
                    "properties": {
                        "petType": {"type": "string"},
                        "meows": {"type": "boolean"},
                    },
                },
                "Dog": {
                    "type": "object",
                    "required": ["petType", "barks"],
                    "properties": {
                        "petType": {"type": "string"},
                        "barks": {"type": "boolean"},
                    },
                },
                "Animal": {
                    "oneOf": [
                        {"$ref": "#/components/schemas/Cat"},
                        {"$ref": "#/components/schemas/Dog"},
                    ],
                    "discriminator": {"propertyName": "petType"},
                },
            },
            "securitySchemes": {
                "apiKey": {"type": "apiKey", "in": "header", "name": "X-API-Key"},
                "bearerAuth": {"type": "http", "scheme": "bearer"},
            },
        },
    }


@pytest.fixture
def captured_logs() -> Generator[list[dict[str, Any]]]:
    """Capture Loguru records emitted during a test.

    Yields:
        list[dict[str, Any]]: Loguru record dictionaries, in emission order.
    """
    records: list[dict[str, Any]] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.fixture(autouse=True)
def logging_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep create_app from replacing Loguru sinks while tests capture logs."""
    monkeypatch.setattr(_state, "configured", True)


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None]:
    """Clear cached settings before and after each test.

    With pytest-env, this ensures the configured test environment is
    loaded fresh for each test.
    """
    get_settings.cache_clear()
    _get_sensitive_fields.cache_clear()
    yield
    get_settings.cache_clear()
    _get_sensitive_fields.cache_clear()


@pytest.fixture(autouse=True)
def clean_request_context() -> Generator[None]:
    """Clear RequestContext before and after each test."""
    RequestContext.clear()
    yield
    RequestContext.clear()
