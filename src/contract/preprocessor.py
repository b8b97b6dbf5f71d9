"""Rewriting of OpenAPI schemas into request and response variants.

The preprocessor walks every schema reachable from an operation's
parameters, request body and responses, and produces a separate rewritten
tree per direction:

- ``nullable: true`` becomes the internal ``x-pactum-nullable`` marker
- ``discriminator`` becomes ``x-pactum-discriminator`` with a mapping from
  tag value to alternative index
- ``readOnly`` properties are removed from the request variant and
  ``writeOnly`` properties from the response variant, together with their
  entries in ``required``
- nodes whose ``format`` has a SerDes entry are tagged with ``x-pactum-serdes``

The dereferenced document is a graph: shared schemas appear under several
parents and recursive schemas are cycles. Rewritten nodes are memoized by
``(id(node), direction)`` and registered before their children are visited,
so a cycle in the input becomes a cycle in the output.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from loguru import logger

from src.contract.document import ApiDocument, resolve_pointer
from src.contract.routes import RouteEntry, RouteIndex
from src.contract.serdes import SerDes
from src.core.constants import (
    COMPONENT_ID_KEY,
    DISCRIMINATOR_KEY,
    NULLABLE_KEY,
    PARAMETER_IN_TO_LOCATION,
    PARAMETER_LOCATIONS,
    SERDES_KEY,
)
from src.core.exceptions import ConfigurationError, LoadError
from src.core.types import Schema


class Direction(StrEnum):
    """Which side of an exchange a schema variant validates."""

    REQUEST = "request"
    RESPONSE = "response"


# Keywords holding one subschema (or, for draft 4 "items", possibly a list)
_SINGLE_SUBSCHEMA = (
    "items",
    "additionalItems",
    "additionalProperties",
    "not",
    "contains",
    "propertyNames",
    "if",
    "then",
    "else",
    "unevaluatedItems",
    "unevaluatedProperties",
)
_SUBSCHEMA_LISTS = ("allOf", "oneOf", "anyOf", "prefixItems")
_SUBSCHEMA_MAPS = ("properties", "patternProperties", "dependentSchemas")

_DEFAULT_STYLES = {"path": "simple", "query": "form", "headers": "simple", "cookies": "form"}


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    """How to extract and decode one declared parameter.

    Attributes:
        name: Name as found in the request (header names lowercased).
        location: ``path``, ``query``, ``headers`` or ``cookies``.
        schema: Request variant of the parameter schema.
        required: Whether the parameter must be present.
        style: Serialization style (``form``, ``simple``, ``deepObject``...).
        explode: Whether arrays/objects are exploded.
        content_type: Media type when declared through ``content`` instead of ``schema``.
    """

    name: str
    location: str
    schema: Schema
    required: bool
    style: str
    explode: bool
    content_type: str | None = None


@dataclass(frozen=True)
class OperationSchemas:
    """Preprocessed schemas of one operation.

    Attributes:
        parameters: One object schema per parameter location that declares parameters.
        parameter_specs: Decoding metadata of every declared parameter.
        bodies: Request body schema per media type.
        body_required: Whether ``requestBody.required`` is true.
        responses: Response schema per status key, then per media type.
    """

    parameters: Mapping[str, Schema] = field(default_factory=dict)
    parameter_specs: tuple[ParameterSpec, ...] = ()
    bodies: Mapping[str, Schema] = field(default_factory=dict)
    body_required: bool = False
    responses: Mapping[str, Mapping[str, Schema]] = field(default_factory=dict)

    @property
    def response_media_types(self) -> list[str]:
        """Every media type any response of the operation may carry."""
        seen: list[str] = []
        for content in self.responses.values():
            seen.extend(media for media in content if media not in seen)
        return seen


class SchemaPreprocessor:
    """Produces ``OperationSchemas`` for every route of a document.

    Args:
        document: The dereferenced document.
        serdes: Registered SerDes entries keyed by format name.
    """

    def __init__(self, document: ApiDocument, serdes: Mapping[str, SerDes]) -> None:
        self._document = document
        self._serdes = serdes
        self._memo: dict[tuple[int, Direction], Schema] = {}
        self._operations: dict[int, OperationSchemas] = {}

    def process(self, routes: RouteIndex) -> Mapping[str, OperationSchemas]:
        """Preprocess every operation of a route index.

        Returns:
            Mapping[str, OperationSchemas]: Read-only map keyed by route identity.
        """
        processed = {entry.identity: self.operation(entry) for entry in routes}
        logger.debug(
            "Preprocessed {} operations ({} schema nodes)",
            len(processed),
            len(self._memo),
            serial=self._document.serial,
        )
        return MappingProxyType(processed)

    def operation(self, entry: RouteEntry) -> OperationSchemas:
        """Preprocess a single operation; shared by every base path it is served under."""
        key = id(entry.operation)
        if key not in self._operations:
            self._operations[key] = self._build_operation(entry)
        return self._operations[key]

    def transform(self, schema: Schema, direction: Direction) -> Schema:
        """Return the rewritten form of a schema node for one direction."""
        if not isinstance(schema, dict):
            return schema
        key = (id(schema), direction)
        if key in self._memo:
            return self._memo[key]

        out: dict[str, Any] = {}
        self._memo[key] = out
        hidden = "readOnly" if direction is Direction.REQUEST else "writeOnly"
        stripped: set[str] = set()

        for keyword, value in schema.items():
            if keyword == "nullable":
                if value is True:
                    out[NULLABLE_KEY] = True
            elif keyword == "discriminator":
                continue
            elif keyword in _SUBSCHEMA_MAPS and isinstance(value, dict):
                kept = {}
                for name, subschema in value.items():
                    if keyword == "properties" and _flagged(subschema, hidden):
                        stripped.add(name)
                        continue
                    kept[name] = self.transform(subschema, direction)
                out[keyword] = kept
            elif keyword in _SINGLE_SUBSCHEMA and isinstance(value, dict):
                out[keyword] = self.transform(value, direction)
            elif keyword in (*_SUBSCHEMA_LISTS, "items") and isinstance(value, list):
                out[keyword] = [self.transform(item, direction) for item in value]
            else:
                out[keyword] = value

        if stripped and isinstance(out.get("required"), list):
            required = [name for name in out["required"] if name not in stripped]
            if required:
                out["required"] = required
            else:
                # Draft 4 rejects an empty "required" list
                del out["required"]

        fmt = schema.get("format")
        if isinstance(fmt, str) and fmt in self._serdes:
            out[SERDES_KEY] = fmt

        if isinstance(schema.get("discriminator"), dict):
            resolved = self._resolve_discriminator(schema)
            if resolved is not None:
                out[DISCRIMINATOR_KEY] = resolved
        return out

    def _build_operation(self, entry: RouteEntry) -> OperationSchemas:
        specs = tuple(
            self._parameter_spec(parameter)
            for parameter in entry.parameters
            if parameter.get("in") in PARAMETER_IN_TO_LOCATION
        )

        parameters: dict[str, Schema] = {}
        for location in PARAMETER_LOCATIONS:
            declared = [spec for spec in specs if spec.location == location]
            if not declared:
                continue
            schema: dict[str, Any] = {
                "type": "object",
                "properties": {spec.name: spec.schema for spec in declared},
            }
            if required := [spec.name for spec in declared if spec.required]:
                schema["required"] = required
            parameters[location] = schema

        request_body = entry.operation.get("requestBody") or {}
        bodies = {
            media_type: self.transform(media.get("schema", {}), Direction.REQUEST)
            for media_type, media in (request_body.get("content") or {}).items()
        }

        responses = {
            str(status).upper() if str(status).lower() != "default" else "default": {
                media_type: self.transform(media.get("schema", {}), Direction.RESPONSE)
                for media_type, media in ((response or {}).get("content") or {}).items()
            }
            for status, response in (entry.operation.get("responses") or {}).items()
        }

        return OperationSchemas(
            parameters=MappingProxyType(parameters),
            parameter_specs=specs,
            bodies=MappingProxyType(bodies),
            body_required=bool(request_body.get("required", False)),
            responses=MappingProxyType(responses),
        )

    def _parameter_spec(self, parameter: dict[str, Any]) -> ParameterSpec:
        location = PARAMETER_IN_TO_LOCATION[parameter["in"]]
        name = parameter.get("name", "")
        if location == "headers":
            name = name.lower()

        content_type = None
        schema: Schema = parameter.get("schema", {})
        if "content" in parameter:
            content_type, media = next(iter(parameter["content"].items()))
            schema = (media or {}).get("schema", {})

        style = parameter.get("style", _DEFAULT_STYLES[location])
        return ParameterSpec(
            name=name,
            location=location,
            schema=self.transform(schema, Direction.REQUEST),
            required=location == "path" or bool(parameter.get("required", False)),
            style=style,
            explode=bool(parameter.get("explode", style == "form")),
            content_type=content_type,
        )

    def _resolve_discriminator(self, schema: dict[str, Any]) -> dict[str, Any] | None:
        """Map discriminator values to indexes of the ``oneOf``/``anyOf`` alternatives."""
        discriminator = schema["discriminator"]
        prop = discriminator.get("propertyName")
        alternatives = schema.get("oneOf") or schema.get("anyOf")
        if not prop or not isinstance(alternatives, list):
            # Discriminators on allOf parents only name the tag property
            return None

        mapping: dict[str, int] = {}
        explicit = discriminator.get("mapping") or {}
        for value, target in explicit.items():
            index = self._alternative_index(alternatives, str(target))
            if index is None:
                msg = f"Discriminator mapping '{value}' -> '{target}' names no alternative"
                raise ConfigurationError(msg, context={"property": prop})
            mapping[str(value)] = index

        if not explicit:
            for index, alternative in enumerate(alternatives):
                for tag in _tags(alternative, prop):
                    mapping.setdefault(tag, index)

        return {"propertyName": prop, "mapping": mapping}

    def _alternative_index(self, alternatives: list[Any], target: str) -> int | None:
        if target.startswith("#"):
            try:
                node = resolve_pointer(self._document.spec, target)
            except LoadError:
                node = None
            for index, alternative in enumerate(alternatives):
                if node is not None and alternative is node:
                    return index

        name = target.rsplit("/", 1)[-1]
        for index, alternative in enumerate(alternatives):
            if isinstance(alternative, dict) and name in (
                alternative.get(COMPONENT_ID_KEY),
                alternative.get("title"),
            ):
                return index
        return None


def _flagged(schema: Any, keyword: str) -> bool:  # noqa: ANN401 - any schema node
    return isinstance(schema, dict) and schema.get(keyword) is True


def _tags(alternative: Any, prop: str) -> list[str]:  # noqa: ANN401 - any schema node
    """Identifying tag values of an alternative: its enum/const, else its name."""
    if not isinstance(alternative, dict):
        return []
    for node in (alternative, *alternative.get("allOf", [])):
        if not isinstance(node, dict):
            continue
        tagged = (node.get("properties") or {}).get(prop)
        if isinstance(tagged, dict):
            if "const" in tagged:
                return [str(tagged["const"])]
            if isinstance(tagged.get("enum"), list):
                return [str(value) for value in tagged["enum"]]
    name = alternative.get(COMPONENT_ID_KEY) or alternative.get("title")
    return [name] if name else []
