"""Unit tests for schema preprocessing."""

from typing import Any

import pytest

from src.contract.document import build_document
from src.contract.preprocessor import Direction, OperationSchemas, SchemaPreprocessor
from src.contract.routes import RouteIndex
from src.contract.serdes import SerDesRegistry
from src.core.constants import DISCRIMINATOR_KEY, NULLABLE_KEY, SERDES_KEY
from src.core.exceptions import ConfigurationError


def _process(spec: dict[str, Any]) -> dict[str, OperationSchemas]:
    document = build_document(spec)
    return dict(SchemaPreprocessor(document, SerDesRegistry()).process(RouteIndex.build(document)))


def _animal_spec(discriminator: dict[str, Any], cat: dict[str, Any], dog: dict[str, Any]) -> dict[str, Any]:
    return {
        "openapi": "3.0.3",
        "info": {"title": "T", "version": "1"},
        "paths": {
            "/animals": {
                "post": {
                    "requestBody": {
                        "content": {
                            "application/json": {
                                "schema": {
                                    "oneOf": [
                                        {"$ref": "#/components/schemas/Cat"},
                                        {"$ref": "#/components/schemas/Dog"},
                                    ],
                                    "discriminator": discriminator,
                                }
                            }
                        }
                    },
                    "responses": {"201": {"description": "Created"}},
                }
            }
        },
        "components": {"schemas": {"Cat": cat, "Dog": dog}},
    }


def _animal_discriminator(operations: dict[str, OperationSchemas]) -> dict[str, Any]:
    body = operations["POST /animals"].bodies["application/json"]
    assert isinstance(body, dict)
    return body[DISCRIMINATOR_KEY]


@pytest.mark.unit
class TestSchemaRewriting:
    """Test per-direction schema variants."""

    def test_read_only_removed_from_requests(self, pets_spec: dict[str, Any]) -> None:
        """Verify readOnly properties and their required entries leave the request variant."""
        # Act
        operations = _process(pets_spec)

        # Assert
        request = operations["POST /v1/pets"].bodies["application/json"]
        response = operations["POST /v1/pets"].responses["201"]["application/json"]
        assert isinstance(request, dict)
        assert isinstance(response, dict)
        assert "id" not in request["properties"]
        assert request["required"] == ["name"]
        assert "id" in response["properties"]
        assert response["required"] == ["id", "name"]

    def test_write_only_removed_from_responses(self) -> None:
        """Verify writeOnly properties leave the response variant, empty required dropped."""
        # Arrange
        spec = {
            "openapi": "3.0.3",
            "info": {"title": "T", "version": "1"},
            "paths": {
                "/users": {
                    "post": {
                        "requestBody": {
                            "content": {"application/json": {"schema": {"$ref": "#/components/schemas/User"}}}
                        },
                        "responses": {
                            "201": {
                                "description": "Created",
                                "content": {"application/json": {"schema": {"$ref": "#/components/schemas/User"}}},
                            }
                        },
                    }
                }
            },
            "components": {
                "schemas": {
                    "User": {
                        "type": "object",
                        "required": ["password"],
                        "properties": {
                            "name": {"type": "string"},
                            "password": {"type": "string", "writeOnly": True},
                        },
                    }
                }
            },
        }

        # Act
        operation = _process(spec)["POST /users"]

        # Assert
        request = operation.bodies["application/json"]
        response = operation.responses["201"]["application/json"]
        assert isinstance(request, dict)
        assert isinstance(response, dict)
        assert request["required"] == ["password"]
        assert set(response["properties"]) == {"name"}
        assert "required" not in response

    def test_nullable_and_serdes_markers(self, pets_spec: dict[str, Any]) -> None:
        """Verify nullable and SerDes formats become internal markers."""
        # Act
        body = _process(pets_spec)["POST /v1/pets"].bodies["application/json"]

        # Assert
        assert isinstance(body, dict)
        tag = body["properties"]["tag"]
        assert tag[NULLABLE_KEY] is True
        assert "nullable" not in tag
        assert body["properties"]["born"][SERDES_KEY] == "date"
        assert SERDES_KEY not in body["properties"]["name"]

    def test_source_schema_untouched(self, pets_spec: dict[str, Any]) -> None:
        """Verify the document's own schemas are not rewritten."""
        # Arrange
        document = build_document(pets_spec)

        # Act
        SchemaPreprocessor(document, SerDesRegistry()).process(RouteIndex.build(document))

        # Assert
        pet = document.spec["components"]["schemas"]["Pet"]
        assert "id" in pet["properties"]
        assert pet["properties"]["tag"]["nullable"] is True

    def test_cycles_are_preserved(self) -> None:
        """Verify a recursive schema produces a recursive variant."""
        # Arrange
        node = {"type": "object", "properties": {"name": {"type": "string"}}}
        node["properties"]["next"] = node
        document = build_document({"openapi": "3.1.0", "info": {}, "paths": {}})
        preprocessor = SchemaPreprocessor(document, SerDesRegistry())

        # Act
        out = preprocessor.transform(node, Direction.REQUEST)

        # Assert
        assert isinstance(out, dict)
        assert out["properties"]["next"] is out
        assert out is not node
        assert preprocessor.transform(node, Direction.REQUEST) is out
        assert preprocessor.transform(node, Direction.RESPONSE) is not out


@pytest.mark.unit
class TestDiscriminator:
    """Test discriminator mapping resolution."""

    def test_implicit_mapping_uses_component_names(self, pets_spec: dict[str, Any]) -> None:
        """Verify alternatives are tagged by component name."""
        # Act
        body = _process(pets_spec)["POST /v1/animals"].bodies["application/json"]

        # Assert
        assert isinstance(body, dict)
        assert body[DISCRIMINATOR_KEY] == {
            "propertyName": "petType",
            "mapping": {"Cat": 0, "Dog": 1},
        }
        assert "discriminator" not in body

    def test_explicit_mapping(self) -> None:
        """Verify explicit mappings by pointer and by bare name."""
        # Arrange
        spec = _animal_spec(
            {
                "propertyName": "kind",
                "mapping": {"dog": "#/components/schemas/Dog", "cat": "Cat"},
            },
            {"type": "object"},
            {"type": "object"},
        )

        # Act & Assert
        assert _animal_discriminator(_process(spec))["mapping"] == {"dog": 1, "cat": 0}

    def test_tags_from_const_and_enum(self) -> None:
        """Verify const and enum tag values name their alternative."""
        # Arrange
        spec = _animal_spec(
            {"propertyName": "kind"},
            {"type": "object", "properties": {"kind": {"const": "c"}}},
            {"allOf": [{"type": "object", "properties": {"kind": {"enum": ["d", "dd"]}}}]},
        )

        # Act & Assert
        assert _animal_discriminator(_process(spec))["mapping"] == {"c": 0, "d": 1, "dd": 1}

    def test_unresolvable_mapping(self) -> None:
        """Verify a mapping naming no alternative is a configuration error."""
        spec = _animal_spec(
            {"propertyName": "kind", "mapping": {"fish": "#/components/schemas/Fish"}},
            {"type": "object"},
            {"type": "object"},
        )

        with pytest.raises(ConfigurationError, match="names no alternative"):
            _process(spec)


@pytest.mark.unit
class TestOperationSchemas:
    """Test parameter and response grouping."""

    def test_parameters_grouped_by_location(self, pets_spec: dict[str, Any]) -> None:
        """Verify one object schema per declared location."""
        # Act
        operations = _process(pets_spec)

        # Assert
        listing = operations["GET /v1/pets"]
        assert set(listing.parameters) == {"query"}
        assert "required" not in listing.parameters["query"]
        path = operations["GET /v1/pets/{petId}"].parameters["path"]
        assert isinstance(path, dict)
        assert path["required"] == ["petId"]

    def test_parameter_specs(self) -> None:
        """Verify styles, explode defaults and lowercased header names."""
        # Arrange
        spec = {
            "openapi": "3.1.0",
            "info": {"title": "T", "version": "1"},
            "paths": {
                "/search": {
                    "get": {
                        "parameters": [
                            {"name": "X-Request-Id", "in": "header", "schema": {"type": "string"}},
                            {"name": "ids", "in": "query", "style": "pipeDelimited", "schema": {"type": "array"}},
                            {
                                "name": "filter",
                                "in": "query",
                                "content": {"application/json": {"schema": {"type": "object"}}},
                            },
                        ],
                        "responses": {},
                    }
                }
            },
        }

        # Act
        specs = {s.name: s for s in _process(spec)["GET /search"].parameter_specs}

        # Assert
        header = specs["x-request-id"]
        assert (header.location, header.style, header.explode) == ("headers", "simple", False)
        assert (specs["ids"].style, specs["ids"].explode) == ("pipeDelimited", False)
        assert specs["filter"].content_type == "application/json"
        assert specs["filter"].schema == {"type": "object"}

    def test_response_keys_and_media_types(self, pets_spec: dict[str, Any]) -> None:
        """Verify status keys and the union of response media types."""
        # Act
        operations = _process(pets_spec)

        # Assert
        get_pet = operations["GET /v1/pets/{petId}"]
        assert list(get_pet.responses) == ["200", "default"]
        assert get_pet.response_media_types == ["application/json"]
        assert operations["DELETE /v1/pets/{petId}"].responses == {"204": {}}
        assert operations["DELETE /v1/pets/{petId}"].response_media_types == []

    def test_body_required_flag(self, pets_spec: dict[str, Any]) -> None:
        """Verify requestBody.required is carried over."""
        assert _process(pets_spec)["POST /v1/pets"].body_required is True
