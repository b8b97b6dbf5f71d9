"""Unit tests for the validator middleware helpers."""

import re
from collections.abc import Callable

import pytest
from fastapi import FastAPI
from pytest_mock import MockerFixture, MockType
from starlette.convertors import IntegerConvertor, StringConvertor

from src.api.middleware.openapi_validator import (
    ContractConvertor,
    OpenApiRequest,
    OpenApiValidatorMiddleware,
    _shape,
    _validated_path_params,
    get_openapi_request,
    ignore_predicate,
)
from src.contract.context import ContractContext, LoadedContract
from src.contract.request import RequestSnapshot
from src.core.config import ValidatorConfig
from src.core.exceptions import ConfigurationError

type ContractFactory = Callable[..., LoadedContract]


@pytest.mark.unit
class TestIgnorePredicate:
    """Test normalizing the ignore_paths option."""

    def test_none(self) -> None:
        """Verify no option means no predicate."""
        assert ignore_predicate(None) is None

    @pytest.mark.parametrize("option", [r"^/(health|metrics)", re.compile(r"^/(health|metrics)")])
    def test_patterns(self, option: str | re.Pattern[str]) -> None:
        """Verify strings and compiled patterns are searched in the path."""
        predicate = ignore_predicate(option)

        assert predicate is not None
        assert predicate("/health")
        assert predicate("/metrics/cpu")
        assert not predicate("/v1/pets")

    def test_callable(self) -> None:
        """Verify predicates are used as they are."""

        def predicate(path: str) -> bool:
            return path.endswith(".css")

        assert ignore_predicate(predicate) is predicate


@pytest.mark.unit
class TestTemplateShape:
    """Test comparing host routes with documented templates."""

    @pytest.mark.parametrize(
        ("template", "expected"),
        [
            ("/v1/pets/{petId}", "/v1/pets/{}"),
            ("/v1/pets/{pet_id:int}", "/v1/pets/{}"),
            ("/v1/pets", "/v1/pets"),
            ("/files/{name}.{ext}", "/files/{}.{}"),
        ],
    )
    def test_shape(self, template: str, expected: str) -> None:
        """Verify placeholders and Starlette convertors collapse alike."""
        assert _shape(template) == expected


@pytest.mark.unit
class TestOpenApiRequest:
    """Test the endpoint view of a validated request."""

    def test_accessors(self, pets_contract: LoadedContract) -> None:
        """Verify the view exposes the typed snapshot values."""
        # Arrange
        route = pets_contract.routes.find("GET", "/v1/pets/{petId}")
        assert route is not None
        snapshot = RequestSnapshot(
            method="GET",
            path="/v1/pets/7",
            query={"verbose": ["1"]},
            headers={"accept": "application/json"},
            path_params={"petId": 7},
        )

        # Act
        view = OpenApiRequest(route=route, snapshot=snapshot, serial=pets_contract.serial)

        # Assert
        assert view.operation_id == "getPet"
        assert view.path_params == {"petId": 7}
        assert view.query == {"verbose": ["1"]}
        assert view.headers == {"accept": "application/json"}
        assert view.cookies == {}
        assert view.body is None

    def test_dependency_requires_validation(self, mock_request: MockType) -> None:
        """Verify the dependency fails for requests that bypassed the validator."""
        mock_request.state.openapi = None

        with pytest.raises(ConfigurationError, match="was not validated against the contract"):
            get_openapi_request(mock_request)

    def test_dependency_returns_view(self, mock_request: MockType) -> None:
        """Verify the dependency hands out the stored view."""
        mock_request.state.openapi = "view"

        assert get_openapi_request(mock_request) == "view"


@pytest.mark.unit
class TestContractConvertor:
    """Test handing typed path values to host routing."""

    IDENTITY = "GET /v1/pets/{petId}"

    def test_defers_without_validated_request(self) -> None:
        """Verify the wrapped convertor is used outside a validated request."""
        convertor = ContractConvertor(IntegerConvertor(), "petId", frozenset({self.IDENTITY}))

        assert convertor.convert("7") == 7
        assert convertor.to_string(7) == "7"
        assert convertor.regex == IntegerConvertor.regex

    def test_returns_validated_value(self) -> None:
        """Verify the committed value wins for a bound operation."""
        convertor = ContractConvertor(StringConvertor(), "petId", frozenset({self.IDENTITY}))
        token = _validated_path_params.set((self.IDENTITY, {"petId": 7}))
        try:
            assert convertor.convert("7") == 7
        finally:
            _validated_path_params.reset(token)

    def test_ignores_other_operations(self) -> None:
        """Verify values validated for another operation are not used."""
        convertor = ContractConvertor(StringConvertor(), "petId", frozenset({self.IDENTITY}))
        token = _validated_path_params.set(("DELETE /v1/pets/{petId}", {"petId": 7}))
        try:
            assert convertor.convert("7") == "7"
        finally:
            _validated_path_params.reset(token)

    def test_binding_maps_names_by_position(
        self, mocker: MockerFixture, contract_factory: ContractFactory
    ) -> None:
        """Verify host routes are bound once per contract, unwrapping old bindings."""
        # Arrange
        app = FastAPI()

        @app.get("/v1/pets/{pet_id}")
        async def get_pet(pet_id: int) -> dict[str, int]:
            return {"id": pet_id}

        route = next(r for r in app.routes if getattr(r, "path", "") == "/v1/pets/{pet_id}")
        middleware = OpenApiValidatorMiddleware(app, ContractContext({}, ValidatorConfig()))
        request = mocker.Mock(app=app)

        # Act
        middleware._install_path_params(request, contract_factory())
        middleware._install_path_params(request, contract_factory())

        # Assert
        convertor = route.param_convertors["pet_id"]
        assert isinstance(convertor, ContractConvertor)
        assert convertor.name == "petId"
        assert convertor.identities == frozenset({self.IDENTITY})
        assert isinstance(convertor.wrapped, StringConvertor)
