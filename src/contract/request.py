"""Request validation: parameters, body, coercion and mutation.

``RequestValidator.validate`` takes a resolved route and a snapshot of the
request and either raises a contract error or commits typed values back
into the snapshot:

1. select the body schema by content type (415 / 400 for a missing body)
2. decode and coerce parameters (transport values are always strings)
3. reject undeclared query parameters unless allowed
4. coerce and prune a working copy of the body
5. run the parameter and body validators from the validator cache
6. commit pruning, coercion and SerDes ``deserialize`` results

Nothing is written to the snapshot unless every step succeeds.
"""

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import parse_qsl

import orjson

from src.contract.cache import NO_CONTENT, CacheKey, ValidatorCache
from src.contract.compiler import CompiledValidator, SchemaCompiler
from src.contract.media import is_json, media_type_essence, select_media_type
from src.contract.preprocessor import Direction, OperationSchemas, ParameterSpec
from src.contract.routes import RouteMatch
from src.contract.serdes import SerDes, transform_value
from src.core.config import RequestValidationConfig
from src.core.constants import ALLOW_UNKNOWN_QUERY_EXTENSION, NULLABLE_KEY, PARAMETER_LOCATIONS
from src.core.exceptions import (
    MalformedBodyError,
    RequestEntityTooLargeError,
    UnsupportedMediaTypeError,
    ValidationError,
    ValidationErrorItem,
)
from src.core.types import Schema

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_DELIMITERS = {"form": ",", "simple": ",", "spaceDelimited": " ", "pipeDelimited": "|"}

# Snapshot attribute holding each parameter location
LOCATION_ATTRIBUTES = {
    "path": "path_params",
    "query": "query",
    "headers": "headers",
    "cookies": "cookies",
}


@dataclass
class RequestSnapshot:
    """The parts of an HTTP request the contract talks about.

    Raw transport values are strings (query values are lists, since keys may
    repeat). After successful validation, declared parameters and the body
    hold their typed values.

    Attributes:
        method: Request method.
        path: Request path.
        query: Query values by key.
        headers: Header values by lowercase name.
        cookies: Cookie values by name.
        path_params: Path parameter values by name.
        body: Parsed body, or None when the request has none.
        content_type: The ``Content-Type`` header value.
    """

    method: str
    path: str
    query: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, Any] = field(default_factory=dict)
    cookies: dict[str, Any] = field(default_factory=dict)
    path_params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    content_type: str | None = None

    @property
    def params(self) -> dict[str, dict[str, Any]]:
        """Parameter values keyed by location."""
        return {
            location: getattr(self, attribute)
            for location, attribute in LOCATION_ATTRIBUTES.items()
        }


def parse_body(raw: bytes, content_type: str | None, *, max_size: int | None = None) -> Any:  # noqa: ANN401
    """Parse a raw request body for its content type.

    JSON, url-encoded forms and text are parsed; other media types are
    returned as bytes and are not structurally validated.

    Raises:
        RequestEntityTooLargeError: If the body exceeds ``max_size`` bytes.
        MalformedBodyError: If the body cannot be parsed for its content type.
    """
    if max_size is not None and len(raw) > max_size:
        msg = f"request body of {len(raw)} bytes exceeds the limit of {max_size} bytes"
        raise RequestEntityTooLargeError(msg, path="body")
    if not raw:
        return None

    essence = media_type_essence(content_type)
    try:
        if is_json(content_type):
            return orjson.loads(raw)
        if essence == "application/x-www-form-urlencoded":
            form: dict[str, Any] = {}
            for key, value in parse_qsl(raw.decode(), keep_blank_values=True):
                if key not in form:
                    form[key] = value
                elif isinstance(form[key], list):
                    form[key].append(value)
                else:
                    form[key] = [form[key], value]
            return form
        if essence is not None and essence.startswith("text/"):
            return raw.decode()
    except (orjson.JSONDecodeError, UnicodeDecodeError) as e:
        msg = f"request body is not valid {essence}: {e}"
        raise MalformedBodyError(msg, path="body", cause=e) from e
    return raw


def schema_types(schema: Schema) -> set[str]:
    """Declared types of a node, looking through ``allOf`` members."""
    if not isinstance(schema, dict):
        return set()
    declared = schema.get("type")
    if isinstance(declared, str):
        return {declared}
    if isinstance(declared, list):
        return set(declared)
    types: set[str] = set()
    for member in schema.get("allOf", []):
        types |= schema_types(member)
    return types


def coerce_scalar(value: Any, types: set[str]) -> Any:  # noqa: ANN401
    """Convert a scalar to one of the declared primitive types when it is lossless."""
    if isinstance(value, str):
        if "integer" in types and _INTEGER_RE.match(value):
            return int(value)
        if "number" in types and _NUMBER_RE.match(value):
            return int(value) if _INTEGER_RE.match(value) else float(value)
        if "boolean" in types and value in ("true", "false"):
            return value == "true"
        if "null" in types and "string" not in types and value == "":
            return None
    elif isinstance(value, bool):
        if "string" in types and "boolean" not in types:
            return str(value).lower()
    elif isinstance(value, int | float) and "string" in types and not types & {"integer", "number"}:
        return str(value)
    return value


def coerce_value(value: Any, schema: Schema, *, arrays: bool = False) -> Any:  # noqa: ANN401
    """Coerce a value, recursively, towards its declared types.

    Args:
        value: Value to coerce; not modified.
        schema: Preprocessed schema of the value.
        arrays: Wrap scalars into one-element lists where arrays are declared.
    """
    if not isinstance(schema, dict) or (value is None and schema.get(NULLABLE_KEY)):
        return value
    types = schema_types(schema)
    if "array" in types:
        if not isinstance(value, list):
            if not arrays:
                return coerce_scalar(value, types)
            value = [value]
        items = schema.get("items")
        if not isinstance(items, dict):
            return value
        return [coerce_value(item, items, arrays=arrays) for item in value]
    if isinstance(value, dict):
        properties: dict[str, Any] = {}
        for node in (schema, *schema.get("allOf", [])):
            if isinstance(node, dict):
                properties.update(node.get("properties") or {})
        extra = schema.get("additionalProperties")
        return {
            key: coerce_value(item, properties.get(key, extra), arrays=arrays)
            for key, item in value.items()
        }
    return coerce_scalar(value, types)


def _declared_properties(schema: dict[str, Any]) -> set[str]:
    names = set(schema.get("properties") or {})
    for member in schema.get("allOf", []):
        if isinstance(member, dict):
            names |= _declared_properties(member)
    return names


type RemoveAdditional = bool | Literal["all", "failing"]


def invalid_request(errors: list[ValidationErrorItem]) -> ValidationError:
    """Build the 400 error for a list of violations."""
    summary = ", ".join(f"{item.path} {item.message}" for item in errors)
    return ValidationError(summary, errors=errors)


class RequestValidator:
    """Validates requests of one loaded contract.

    Args:
        schemas: Preprocessed operations keyed by route identity.
        compiler: Compiler for the document's dialect.
        cache: Shared validator cache.
        serdes: SerDes entries by format name.
        options: Request validation options.
    """

    def __init__(
        self,
        schemas: Mapping[str, OperationSchemas],
        compiler: SchemaCompiler,
        cache: ValidatorCache,
        serdes: Mapping[str, SerDes],
        options: RequestValidationConfig,
    ) -> None:
        self._schemas = schemas
        self._compiler = compiler
        self._cache = cache
        self._serdes = serdes
        self.options = options

    def validate(self, match: RouteMatch, snapshot: RequestSnapshot) -> RequestSnapshot:
        """Validate a request and commit its typed values.

        Args:
            match: The resolved route and raw path parameter values.
            snapshot: The request; updated in place on success.

        Returns:
            RequestSnapshot: The same snapshot, now holding typed values.

        Raises:
            UnsupportedMediaTypeError: The body media type is not declared.
            ValidationError: Parameters or body violate the contract.
        """
        entry = match.entry
        operation = self._schemas[entry.identity]
        all_errors = self.options.all_errors

        media_type, body_schema = self._select_body(operation, snapshot)

        errors: list[ValidationErrorItem] = []
        params = self._decode_parameters(operation, snapshot, match.path_params, errors)
        errors.extend(self._unknown_query(operation, entry.operation, snapshot))
        if errors and not all_errors:
            raise invalid_request(errors[:1])

        if operation.parameters:
            validators = self._cache.get_or_build(
                CacheKey(entry.identity, NO_CONTENT, Direction.REQUEST),
                lambda: {
                    location: self._compiler.compile(schema, location)
                    for location, schema in operation.parameters.items()
                },
            )
            for location in PARAMETER_LOCATIONS:
                if location in validators:
                    errors.extend(
                        validators[location].errors(params[location], all_errors=all_errors)
                    )
                    if errors and not all_errors:
                        raise invalid_request(errors)

        body = snapshot.body
        if media_type is not None and not isinstance(body, bytes):
            body = self._prepare_body(body, body_schema)
            validator: CompiledValidator = self._cache.get_or_build(
                CacheKey(entry.identity, media_type, Direction.REQUEST),
                lambda: self._compiler.compile(body_schema, "body"),
            )
            errors.extend(validator.errors(body, all_errors=all_errors))

        if errors:
            raise invalid_request(errors)

        # Typed values are computed first so a failing transform commits nothing
        typed_params = {
            location: {
                name: transform_value(
                    value,
                    operation.parameters[location]["properties"].get(name),
                    self._serdes,
                    deserialize=True,
                    location=f"{location}.{name}",
                    select=self._compiler.select_alternative,
                )
                for name, value in values.items()
            }
            for location, values in params.items()
            if values
        }
        if media_type is not None and not isinstance(body, bytes):
            body = transform_value(
                body,
                body_schema,
                self._serdes,
                deserialize=True,
                location="body",
                select=self._compiler.select_alternative,
            )

        snapshot.path_params = dict(match.path_params)
        for location, values in typed_params.items():
            getattr(snapshot, LOCATION_ATTRIBUTES[location]).update(values)
        snapshot.body = body
        return snapshot

    def _select_body(
        self, operation: OperationSchemas, snapshot: RequestSnapshot
    ) -> tuple[str | None, Schema]:
        if not operation.bodies:
            return None, {}
        if snapshot.body is None:
            if operation.body_required:
                raise ValidationError("request body is required", path="body")
            return None, {}
        media_type = select_media_type(operation.bodies, snapshot.content_type)
        if media_type is None:
            msg = f"unsupported media type '{snapshot.content_type}'"
            raise UnsupportedMediaTypeError(
                msg,
                path="headers.content-type",
                context={"declared": list(operation.bodies)},
            )
        return media_type, operation.bodies[media_type]

    def _prepare_body(self, body: Any, schema: Schema) -> Any:  # noqa: ANN401
        """Coerce and prune a working copy of the body."""
        working = copy.deepcopy(body)
        if self.options.coerce_types:
            working = coerce_value(working, schema, arrays=self.options.coerce_types == "array")
        if self.options.remove_additional:
            self._prune(working, schema, self.options.remove_additional)
        return working

    def _prune(self, value: Any, schema: Schema, mode: RemoveAdditional) -> None:  # noqa: ANN401
        """Drop undeclared properties in place, following the schema."""
        if not isinstance(schema, dict):
            return
        if isinstance(value, list) and isinstance(schema.get("items"), dict):
            for item in value:
                self._prune(item, schema["items"], mode)
            return
        if not isinstance(value, dict):
            return

        declared = _declared_properties(schema)
        extra = schema.get("additionalProperties")
        for key in [key for key in value if key not in declared]:
            if mode == "all" and "properties" in schema:
                del value[key]
            elif extra is False:
                del value[key]
            elif mode == "failing" and isinstance(extra, dict):
                if not self._compiler.is_valid(value[key], extra):
                    del value[key]

        for node in (schema, *schema.get("allOf", [])):
            if not isinstance(node, dict):
                continue
            for name, subschema in (node.get("properties") or {}).items():
                if name in value:
                    self._prune(value[name], subschema, mode)
        if isinstance(extra, dict):
            for key in [key for key in value if key not in declared]:
                self._prune(value[key], extra, mode)
        alternative = self._compiler.select_alternative(value, schema)
        if alternative is not None:
            self._prune(value, alternative, mode)

    def _decode_parameters(
        self,
        operation: OperationSchemas,
        snapshot: RequestSnapshot,
        path_params: Mapping[str, str],
        errors: list[ValidationErrorItem],
    ) -> dict[str, dict[str, Any]]:
        """Extract declared parameters from the request and coerce them."""
        params: dict[str, dict[str, Any]] = {location: {} for location in PARAMETER_LOCATIONS}
        for spec in operation.parameter_specs:
            raw = self._raw_parameter(spec, snapshot, path_params)
            if raw is None:
                continue
            if spec.content_type is not None:
                text = raw[-1] if isinstance(raw, list) else raw
                try:
                    params[spec.location][spec.name] = orjson.loads(text)
                except orjson.JSONDecodeError:
                    errors.append(
                        ValidationErrorItem(
                            f"{spec.location}.{spec.name}",
                            f"must be valid {spec.content_type}",
                            "content.openapi.validation",
                        )
                    )
                continue
            params[spec.location][spec.name] = _shape_parameter(spec, raw)
        return params

    @staticmethod
    def _raw_parameter(
        spec: ParameterSpec, snapshot: RequestSnapshot, path_params: Mapping[str, str]
    ) -> Any:  # noqa: ANN401
        if spec.location == "path":
            return path_params.get(spec.name)
        if spec.location == "query" and spec.style == "deepObject":
            prefix = f"{spec.name}["
            nested = {
                key[len(prefix) : -1]: values[-1] if isinstance(values, list) else values
                for key, values in snapshot.query.items()
                if key.startswith(prefix) and key.endswith("]")
            }
            return nested or None
        return getattr(snapshot, LOCATION_ATTRIBUTES[spec.location]).get(spec.name)

    def _unknown_query(
        self,
        operation: OperationSchemas,
        declaration: Mapping[str, Any],
        snapshot: RequestSnapshot,
    ) -> list[ValidationErrorItem]:
        allowed = declaration.get(
            ALLOW_UNKNOWN_QUERY_EXTENSION, self.options.allow_unknown_query_parameters
        )
        if allowed:
            return []
        declared = {spec.name for spec in operation.parameter_specs if spec.location == "query"}
        deep = {spec.name for spec in operation.parameter_specs if spec.style == "deepObject"}
        return [
            ValidationErrorItem(
                f"query.{key}",
                f"Unknown query parameter '{key}'",
                "unknownQueryParameter.openapi.validation",
            )
            for key in snapshot.query
            if key not in declared and key.split("[", 1)[0] not in deep
        ]


def _shape_parameter(spec: ParameterSpec, raw: Any) -> Any:  # noqa: ANN401
    """Turn raw transport strings into the shape and types the schema declares."""
    schema = spec.schema
    types = schema_types(schema)
    values = raw if isinstance(raw, list) else [raw]

    if "array" in types:
        items = schema.get("items") if isinstance(schema, dict) else None
        if spec.explode and spec.style == "form":
            parts = values
        else:
            delimiter = _DELIMITERS.get(spec.style, ",")
            parts = [part for value in values for part in value.split(delimiter)]
        return [coerce_value(part, items) for part in parts]

    if isinstance(raw, dict):
        return coerce_value(raw, schema)

    if "object" in types and spec.style in ("form", "simple"):
        pieces = values[-1].split(",")
        if spec.explode and spec.style == "simple":
            pairs = dict(piece.partition("=")[::2] for piece in pieces)
        else:
            pairs = dict(zip(pieces[::2], pieces[1::2], strict=False))
        return coerce_value(pairs, schema)

    if len(values) > 1:
        # A repeated scalar stays a list so validation reports it
        return [coerce_value(value, schema) for value in values]
    return coerce_value(values[0], schema)
