"""Shared fixtures for integration tests.

Every integration test talks HTTP to a FastAPI application built by
``create_app`` for the pets document, with endpoints that read their typed
values from the validated request.
"""

from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
from fastapi import Depends, FastAPI, Request, Response
from httpx import ASGITransport, AsyncClient

from src.api.main import create_app
from src.api.middleware.openapi_validator import OpenApiRequest, get_openapi_request
from src.core.config import Settings, ValidatorConfig

type AppFactory = Callable[..., FastAPI]


def add_pet_endpoints(app: FastAPI) -> None:
    """Implement the pets document on an application."""

    @app.get("/v1/pets")
    async def list_pets(
        openapi: OpenApiRequest = Depends(get_openapi_request),
    ) -> list[dict[str, Any]]:
        limit = openapi.query.get("limit", 2)
        return [{"id": index, "name": f"pet-{index}"} for index in range(limit)]

    @app.post("/v1/pets", status_code=201)
    async def create_pet(
        openapi: OpenApiRequest = Depends(get_openapi_request),
    ) -> dict[str, Any]:
        body = dict(openapi.body)
        born = body.get("born")
        if born is not None:
            body["born"] = born.isoformat()
            body["tag"] = type(born).__name__
        return {"id": 1, **body}

    @app.get("/v1/pets/{petId}")
    async def get_pet(
        request: Request,
        response: Response,
        openapi: OpenApiRequest = Depends(get_openapi_request),
    ) -> dict[str, Any]:
        pet_id = openapi.path_params["petId"]
        response.headers["X-Pet-Id-Type"] = type(request.path_params["petId"]).__name__
        if pet_id == 0:
            return {"name": "ghost"}
        return {"id": pet_id, "name": "Rex"}

    @app.delete("/v1/pets/{petId}")
    async def delete_pet() -> Response:
        return Response(status_code=204)

    @app.post("/v1/animals")
    async def create_animal(
        openapi: OpenApiRequest = Depends(get_openapi_request),
    ) -> Response:
        return Response(status_code=201, headers={"X-Animal": openapi.body["petType"]})

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/health/contract")
    async def health_contract(
        openapi: OpenApiRequest = Depends(get_openapi_request),
    ) -> dict[str, Any]:
        return {"serial": openapi.serial}


@pytest.fixture
def app_factory(pets_spec: dict[str, Any]) -> AppFactory:
    """Factory building the pets application.

    Keyword arguments are passed to ``ValidatorConfig``; ``api_spec``,
    ``security_handlers``, ``serdes``, ``formats`` and ``on_response_error``
    are passed to ``create_app``.
    """

    def _build(
        *,
        api_spec: Any = None,  # noqa: ANN401 - any document source
        security_handlers: dict[str, Any] | None = None,
        serdes: tuple[Any, ...] = (),
        formats: dict[str, Callable[[Any], bool]] | None = None,
        on_response_error: Callable[..., None] | None = None,
        **config: Any,  # noqa: ANN401 - ValidatorConfig fields
    ) -> FastAPI:
        settings = Settings(validator_config=ValidatorConfig(**config))
        app = create_app(
            settings,
            api_spec=api_spec if api_spec is not None else pets_spec,
            security_handlers=security_handlers,
            serdes=serdes,
            formats=formats,
            on_response_error=on_response_error,
        )
        add_pet_endpoints(app)
        return app

    return _build


@pytest.fixture
def app(app_factory: AppFactory) -> FastAPI:
    """Pets application with default options."""
    return app_factory()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """HTTP client for the default pets application."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def client_for() -> Callable[[FastAPI], AsyncClient]:
    """Factory of HTTP clients for applications built inside a test."""

    def _client(app: FastAPI) -> AsyncClient:
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    return _client
