"""Shared fixtures for unit tests."""

from collections.abc import Callable
from typing import Any

import pytest
from pytest_mock import MockerFixture, MockType

from src.contract.context import LoadedContract, build_contract
from src.contract.request import RequestSnapshot
from src.core.config import Settings, ValidatorConfig

type ContractFactory = Callable[..., LoadedContract]
type SnapshotFactory = Callable[..., RequestSnapshot]


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Provide a Settings object with test defaults.

    Returns:
        Settings: Real settings object built from test environment variables.
    """
    monkeypatch.setenv("APP_NAME", "TestApp")
    monkeypatch.setenv("APP_VERSION", "1.0.0")
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("API_HOST", "127.0.0.1")
    monkeypatch.setenv("API_PORT", "3000")
    return Settings()


@pytest.fixture
def contract_factory(pets_spec: dict[str, Any]) -> ContractFactory:
    """Factory building a loaded contract from the pets document.

    Keyword arguments are passed to ``ValidatorConfig``; ``spec`` replaces
    the document and ``security_handlers``, ``serdes``, ``formats``
    and ``on_response_error`` are passed to ``build_contract``.
    """

    def _build(
        spec: dict[str, Any] | None = None,
        *,
        security_handlers: dict[str, Any] | None = None,
        serdes: tuple[Any, ...] = (),
        formats: dict[str, Callable[[Any], bool]] | None = None,
        on_response_error: Callable[..., None] | None = None,
        **config: Any,  # noqa: ANN401 - ValidatorConfig fields
    ) -> LoadedContract:
        return build_contract(
            spec if spec is not None else pets_spec,
            ValidatorConfig(**config),
            security_handlers=security_handlers,
            serdes=serdes,
            formats=formats,
            on_response_error=on_response_error,
        )

    return _build


@pytest.fixture
def pets_contract(contract_factory: ContractFactory) -> LoadedContract:
    """The pets document loaded with default options."""
    return contract_factory()


@pytest.fixture
def snapshot_factory() -> SnapshotFactory:
    """Factory for request snapshots in the shape the middleware produces."""

    def _snapshot(
        method: str,
        path: str,
        *,
        query: dict[str, list[str]] | None = None,
        headers: dict[str, str] | None = None,
        cookies: dict[str, str] | None = None,
        body: Any = None,  # noqa: ANN401 - any parsed body
        content_type: str | None = None,
    ) -> RequestSnapshot:
        if body is not None and content_type is None:
            content_type = "application/json"
        return RequestSnapshot(
            method=method,
            path=path,
            query=dict(query or {}),
            headers={k.lower(): v for k, v in (headers or {}).items()},
            cookies=dict(cookies or {}),
            body=body,
            content_type=content_type,
        )

    return _snapshot


@pytest.fixture
def mock_request(mocker: MockerFixture) -> MockType:
    """Provide a mock Starlette request carrying no credentials.

    Returns:
        MockType: Request with empty headers, query parameters and cookies.
    """
    request = mocker.Mock()
    request.method = "GET"
    request.url.path = "/v1/pets"
    request.headers = {}
    request.query_params = {}
    request.cookies = {}
    return request
