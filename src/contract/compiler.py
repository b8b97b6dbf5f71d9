"""Compilation of preprocessed schemas into jsonschema validators.

OpenAPI 3.0 schemas are evaluated with the Draft 4 validator and OpenAPI 3.1
schemas with the Draft 2020-12 validator. Both are extended with the
internal markers written by the preprocessor:

- every keyword accepts ``None`` on nodes carrying ``x-pactum-nullable``
- ``oneOf``/``anyOf`` select the alternative named by
  ``x-pactum-discriminator`` directly, and otherwise report the errors of
  the closest failing alternative
- ``required`` points its error path at the missing property
"""

import re
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from jsonschema import Draft4Validator, Draft202012Validator, FormatChecker, validators
from jsonschema.exceptions import SchemaError
from jsonschema.exceptions import ValidationError as SchemaViolation
from jsonschema.protocols import Validator

from src.core.constants import DISCRIMINATOR_KEY, NULLABLE_KEY
from src.core.exceptions import ConfigurationError, ValidationErrorItem
from src.core.types import FormatCheck, Schema

type Keyword = Callable[[Validator, Any, Any, dict[str, Any]], Iterator[SchemaViolation] | None]

_DATE_TIME_RE = re.compile(
    r"(\d{4}-\d{2}-\d{2})T(\d{2}:\d{2}:\d{2})(\.\d+)?(Z|[+-]\d{2}:\d{2})", re.IGNORECASE
)


def _accept_null(keyword: Keyword) -> Keyword:
    def validate(
        validator: Validator, value: Any, instance: Any, schema: dict[str, Any]  # noqa: ANN401
    ) -> Iterator[SchemaViolation]:
        if instance is None and schema.get(NULLABLE_KEY) is True:
            return
        yield from keyword(validator, value, instance, schema) or ()

    return validate


def _required(
    validator: Validator, required: Any, instance: Any, schema: dict[str, Any]  # noqa: ANN401
) -> Iterator[SchemaViolation]:
    if not validator.is_type(instance, "object"):
        return
    for prop in required:
        if prop not in instance:
            yield SchemaViolation(f"{prop!r} is a required property", path=deque([prop]))


def discriminated_index(instance: Any, schema: dict[str, Any]) -> int | None:  # noqa: ANN401
    """Index of the alternative the instance's discriminator value names, if any."""
    discriminator = schema.get(DISCRIMINATOR_KEY)
    if not discriminator or not isinstance(instance, dict):
        return None
    value = instance.get(discriminator["propertyName"])
    if not isinstance(value, str):
        return None
    return discriminator["mapping"].get(value)


def _alternatives(*, exclusive: bool) -> Keyword:
    def validate(
        validator: Validator, alternatives: Any, instance: Any, schema: dict[str, Any]  # noqa: ANN401
    ) -> Iterator[SchemaViolation]:
        index = discriminated_index(instance, schema)
        if index is not None:
            yield from validator.descend(instance, alternatives[index], schema_path=index)
            return

        failures: list[list[SchemaViolation]] = []
        valid: list[int] = []
        for index, alternative in enumerate(alternatives):
            errors = list(validator.descend(instance, alternative, schema_path=index))
            if errors:
                failures.append(errors)
                continue
            valid.append(index)
            if not exclusive:
                return

        if len(valid) > 1:
            yield SchemaViolation(
                f"instance is valid under more than one alternative ({valid})"
            )
        elif failures and not valid:
            # Fewest errors is the closest alternative; min() keeps the first on ties
            yield from min(failures, key=len)

    return validate


def _extend(base: type[Validator]) -> type[Validator]:
    overrides: dict[str, Keyword] = {
        "required": _required,
        "oneOf": _alternatives(exclusive=True),
        "anyOf": _alternatives(exclusive=False),
    }
    keywords = {**base.VALIDATORS, **overrides}
    return validators.extend(
        base, {name: _accept_null(keyword) for name, keyword in keywords.items()}
    )


OpenApi30Validator = _extend(Draft4Validator)
OpenApi31Validator = _extend(Draft202012Validator)


def is_acyclic(schema: Any) -> bool:  # noqa: ANN401 - any schema node
    """Whether a schema graph has no cycles (meta-validation needs a tree)."""
    on_stack: set[int] = set()
    done: set[int] = set()

    def visit(node: Any) -> bool:  # noqa: ANN401
        if not isinstance(node, dict | list):
            return True
        if id(node) in on_stack:
            return False
        if id(node) in done:
            return True
        on_stack.add(id(node))
        children = node.values() if isinstance(node, dict) else node
        acyclic = all(visit(child) for child in children)
        on_stack.discard(id(node))
        done.add(id(node))
        return acyclic

    return visit(schema)


def to_item(location: str, error: SchemaViolation) -> ValidationErrorItem:
    """Convert a jsonschema error into a violation item located under ``location``."""
    path = ".".join([location, *(str(part) for part in error.absolute_path)])
    return ValidationErrorItem(
        path=path,
        message=error.message,
        error_code=f"{error.validator}.openapi.validation",
    )


@dataclass(frozen=True)
class CompiledValidator:
    """A compiled schema bound to the location its violations are reported under."""

    location: str
    validator: Validator

    def errors(self, instance: Any, *, all_errors: bool = False) -> list[ValidationErrorItem]:  # noqa: ANN401
        """Validate an instance.

        Args:
            instance: The value to validate.
            all_errors: Collect every violation instead of only the first.

        Returns:
            list[ValidationErrorItem]: Violations in evaluation order.
        """
        found = self.validator.iter_errors(instance)
        if all_errors:
            return [to_item(self.location, error) for error in found]
        first = next(found, None)
        return [] if first is None else [to_item(self.location, first)]


def is_date_time(instance: object) -> bool:
    """RFC 3339 ``date-time`` check; values that are not strings pass.

    Raises:
        ValueError: If a field is out of range, e.g. month 13.
    """
    if not isinstance(instance, str):
        return True
    match = _DATE_TIME_RE.fullmatch(instance)
    if match is None:
        return False
    date, time, _, offset = match.groups()
    datetime.fromisoformat(f"{date}T{time}{offset.upper()}")
    return True


def build_format_checker(
    validate_formats: bool, formats: Mapping[str, FormatCheck] | None = None
) -> FormatChecker | None:
    """The format checker shared by one document's validators.

    Custom ``formats`` are checked even when the dialect's own checks are
    disabled. A check signals failure by returning False or raising
    ``ValueError``.
    """
    formats = formats or {}
    if not validate_formats and not formats:
        return None
    checker = FormatChecker() if validate_formats else FormatChecker(formats=())
    if validate_formats:
        checker.checks("date-time", raises=ValueError)(is_date_time)
    for name, check in formats.items():
        checker.checks(name, raises=ValueError)(check)
    return checker


class SchemaCompiler:
    """Builds validators for one document's schema dialect.

    Args:
        version: ``"3.0"`` or ``"3.1"``.
        validate_formats: Whether the dialect's ``format`` keywords are checked.
        formats: Custom format checks by format name.
    """

    def __init__(
        self,
        version: str,
        *,
        validate_formats: bool = True,
        formats: Mapping[str, FormatCheck] | None = None,
    ) -> None:
        self.version = version
        self._cls = OpenApi30Validator if version == "3.0" else OpenApi31Validator
        self._format_checker = build_format_checker(validate_formats, formats)

    def compile(self, schema: Schema, location: str) -> CompiledValidator:
        """Compile a preprocessed schema.

        Raises:
            ConfigurationError: If the schema is not valid for the dialect.
        """
        if is_acyclic(schema):
            try:
                self._cls.check_schema(schema)
            except SchemaError as e:
                msg = f"Invalid schema for {location}: {e.message}"
                raise ConfigurationError(msg, cause=e) from e
        return CompiledValidator(
            location=location,
            validator=self._cls(schema, format_checker=self._format_checker),
        )

    def is_valid(self, instance: Any, schema: Schema) -> bool:  # noqa: ANN401
        """One-off validity check, used to pick among alternatives."""
        return self._cls(schema, format_checker=self._format_checker).is_valid(instance)

    def select_alternative(self, instance: Any, schema: dict[str, Any]) -> Schema | None:  # noqa: ANN401
        """The ``oneOf``/``anyOf`` alternative an instance is an instance of.

        The discriminator decides when it names an alternative; otherwise the
        first valid alternative in document order is chosen.
        """
        alternatives = schema.get("oneOf") or schema.get("anyOf")
        if not isinstance(alternatives, list):
            return None
        index = discriminated_index(instance, schema)
        if index is not None:
            return alternatives[index]
        return next((alt for alt in alternatives if self.is_valid(instance, alt)), None)
