"""Response validation.

The response schema is chosen by exact status code, then by range
(``2XX``), then by ``default``. An operation that documents none of them
for a status leaves the response unvalidated. Bodies are passed through
SerDes ``serialize`` first so the value checked is the value transmitted.

Violations raise ``ResponseValidationError`` (500) unless an ``on_error``
callback is registered, in which case the callback is told and the
response goes out unchanged.
"""

from collections.abc import Callable, Mapping
from typing import Any

from loguru import logger

from src.contract.cache import CacheKey, ValidatorCache
from src.contract.compiler import SchemaCompiler
from src.contract.media import accepts, select_media_type
from src.contract.preprocessor import Direction, OperationSchemas
from src.contract.routes import RouteEntry
from src.contract.serdes import SerDes, transform_value
from src.core.config import ResponseValidationConfig
from src.core.exceptions import (
    NotAcceptableError,
    ResponseValidationError,
    ValidationError,
    ValidationErrorItem,
)

type ResponseErrorCallback = Callable[[ResponseValidationError, Any, Any], None]


def select_status_key(responses: Mapping[str, Any], status_code: int) -> str | None:
    """Pick the documented response for a status code.

    Args:
        responses: Preprocessed responses keyed by status key.
        status_code: The produced status code.

    Returns:
        str | None: ``"201"``, ``"2XX"``, ``"default"``, or None if undocumented.
    """
    for key in (str(status_code), f"{str(status_code)[0]}XX", "default"):
        if key in responses:
            return key
    return None


class ResponseValidator:
    """Validates produced responses of one loaded contract.

    Args:
        schemas: Preprocessed operations keyed by route identity.
        compiler: Compiler for the document's dialect.
        cache: Shared validator cache.
        serdes: SerDes entries by format name.
        options: Response validation options.
        on_error: Called instead of raising when a response violates the contract.
    """

    def __init__(
        self,
        schemas: Mapping[str, OperationSchemas],
        compiler: SchemaCompiler,
        cache: ValidatorCache,
        serdes: Mapping[str, SerDes],
        options: ResponseValidationConfig,
        on_error: ResponseErrorCallback | None = None,
    ) -> None:
        self._schemas = schemas
        self._compiler = compiler
        self._cache = cache
        self._serdes = serdes
        self.options = options
        self.on_error = on_error

    def check_acceptable(self, route: RouteEntry, accept: str | None) -> None:
        """Fail early when the client accepts none of the documented response types.

        Raises:
            NotAcceptableError: If ``Accept`` excludes every documented media type.
        """
        offered = self._schemas[route.identity].response_media_types
        if offered and not any(accepts(accept, media_type) for media_type in offered):
            msg = f"none of the response media types {offered} is acceptable"
            raise NotAcceptableError(msg, path="headers.accept")

    def validate(
        self,
        route: RouteEntry,
        status_code: int,
        body: Any,  # noqa: ANN401 - any parsed body
        content_type: str | None,
        *,
        request: Any = None,  # noqa: ANN401 - host request, passed to on_error
    ) -> Any:  # noqa: ANN401
        """Validate a produced response body.

        Args:
            route: The operation that produced the response.
            status_code: Produced status code.
            body: Parsed response body.
            content_type: Produced ``Content-Type``.
            request: The host request, handed to ``on_error``.

        Returns:
            Any: The body as transmitted (after SerDes ``serialize``).

        Raises:
            ResponseValidationError: On violation when no ``on_error`` is set.
        """
        responses = self._schemas[route.identity].responses
        status_key = select_status_key(responses, status_code)
        if status_key is None or not responses[status_key]:
            return body

        content = responses[status_key]
        media_type = select_media_type(content, content_type)
        if media_type is None:
            errors = [
                ValidationErrorItem(
                    "response",
                    f"media type '{content_type}' is not documented for status {status_key}",
                    "content-type.openapi.validation",
                )
            ]
        elif isinstance(body, bytes):
            return body
        else:
            schema = content[media_type]
            try:
                body = transform_value(
                    body,
                    schema,
                    self._serdes,
                    deserialize=False,
                    location="response",
                    select=self._compiler.select_alternative,
                )
            except ValidationError as e:
                errors = e.errors
            else:
                validator = self._cache.get_or_build(
                    CacheKey(f"{route.identity} {status_key}", media_type, Direction.RESPONSE),
                    lambda: self._compiler.compile(schema, "response"),
                )
                errors = validator.errors(body, all_errors=self.options.all_errors)

        if not errors:
            return body

        error = ResponseValidationError(
            ", ".join(f"{item.path} {item.message}" for item in errors),
            errors=errors,
            context={"operation": route.identity, "status_code": status_code},
        )
        if self.on_error is None:
            raise error
        logger.warning(
            "Response for {} violates the contract",
            route.identity,
            status_code=status_code,
            error_code=error.error_code,
        )
        self.on_error(error, body, request)
        return body
