"""Middleware enforcing the OpenAPI contract on every request.

For each request the middleware:

1. assigns a correlation ID and binds it to the log context
2. lets paths matching ``ignore_paths`` through untouched
3. acquires the loaded contract (the first requests share a single load)
4. resolves the operation (404 / 405 / pass-through for undocumented paths)
5. evaluates the operation's security requirements
6. parses and validates parameters and body, committing typed values
7. calls the endpoint, which finds the typed values in ``request.state.openapi``
   and, for host routes bound to the operation, in ``request.path_params``
8. validates the produced response when response validation is enabled

Any contract error is rendered as a structured error response.
"""

import re
import threading
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from loguru import logger
from starlette.convertors import Convertor
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from src.api.middleware.error_handler import contract_error_response
from src.contract.context import ContractContext, LoadedContract
from src.contract.request import RequestSnapshot, parse_body
from src.contract.routes import PLACEHOLDER_RE, RouteEntry
from src.core.context import RequestContext, generate_correlation_id
from src.core.exceptions import (
    ConfigurationError,
    MalformedBodyError,
    PactumError,
    RequestEntityTooLargeError,
)
from src.core.types import PathPredicate

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Starlette path convertors, e.g. "{pet_id:int}"
_CONVERTOR_RE = re.compile(r"\{([^{}:]+):[^{}]+\}")

# Operation identity and typed path parameters of the request being served
_validated_path_params: ContextVar[tuple[str, dict[str, Any]] | None] = ContextVar(
    "validated_path_params", default=None
)


@dataclass(frozen=True)
class OpenApiRequest:
    """Typed view of a validated request, available to endpoints.

    Attributes:
        route: The documented operation the request was resolved to.
        snapshot: Coerced, pruned and deserialized request values.
        serial: Serial of the contract the request was validated against.
    """

    route: RouteEntry
    snapshot: RequestSnapshot
    serial: int

    @property
    def operation_id(self) -> str | None:
        """The ``operationId`` of the operation, if declared."""
        return self.route.operation.get("operationId")

    @property
    def path_params(self) -> dict[str, Any]:
        """Typed path parameters."""
        return self.snapshot.path_params

    @property
    def query(self) -> dict[str, Any]:
        """Typed query parameters (undeclared ones keep their raw lists)."""
        return self.snapshot.query

    @property
    def headers(self) -> dict[str, Any]:
        """Headers by lowercase name, declared ones typed."""
        return self.snapshot.headers

    @property
    def cookies(self) -> dict[str, Any]:
        """Cookies, declared ones typed."""
        return self.snapshot.cookies

    @property
    def body(self) -> Any:  # noqa: ANN401 - any parsed body
        """Pruned, coerced and deserialized body."""
        return self.snapshot.body


def get_openapi_request(request: Request) -> OpenApiRequest:
    """FastAPI dependency returning the validated view of the current request.

    Raises:
        ConfigurationError: If the request did not pass through the validator.
    """
    openapi = getattr(request.state, "openapi", None)
    if openapi is None:
        msg = f"{request.method} {request.url.path} was not validated against the contract"
        raise ConfigurationError(msg)
    return openapi


def ignore_predicate(ignore: str | re.Pattern[str] | PathPredicate | None) -> PathPredicate | None:
    """Normalize the ``ignore_paths`` option into a predicate."""
    if ignore is None:
        return None
    if callable(ignore):
        return ignore
    pattern = re.compile(ignore) if isinstance(ignore, str) else ignore
    return lambda path: pattern.search(path) is not None


class ContractConvertor(Convertor[Any]):
    """Path convertor handing a host route the contract's typed value.

    Wraps the convertor the host route declared. While a validated request
    for one of the bound operations is being served, ``convert`` returns the
    value committed by request validation; otherwise it defers to the
    wrapped convertor.

    Args:
        wrapped: The host route's own convertor.
        name: The parameter's name in the document.
        identities: Identities of the operations bound to the host route.
    """

    def __init__(self, wrapped: Convertor[Any], name: str, identities: frozenset[str]) -> None:
        self.wrapped = wrapped
        self.name = name
        self.identities = identities
        self.regex = wrapped.regex  # type: ignore[misc]

    def convert(self, value: str) -> Any:  # noqa: ANN401 - any declared type
        current = _validated_path_params.get()
        if current is not None:
            identity, params = current
            if identity in self.identities and self.name in params:
                return params[self.name]
        return self.wrapped.convert(value)

    def to_string(self, value: Any) -> str:  # noqa: ANN401 - any declared type
        return self.wrapped.to_string(value)


def _shape(template: str) -> str:
    return PLACEHOLDER_RE.sub("{}", _CONVERTOR_RE.sub(r"{\1}", template))


class OpenApiValidatorMiddleware(BaseHTTPMiddleware):
    """Validate requests (and optionally responses) against an OpenAPI document.

    Args:
        app: The ASGI application to wrap.
        context: Owner of the loaded contract.
        ignore_paths: Regex or predicate of paths that bypass validation;
            defaults to ``context.config.ignore_paths``.
    """

    def __init__(
        self,
        app: ASGIApp,
        context: ContractContext,
        ignore_paths: str | re.Pattern[str] | PathPredicate | None = None,
    ) -> None:
        super().__init__(app)
        self.context = context
        self.config = context.config
        self._ignore = ignore_predicate(
            ignore_paths if ignore_paths is not None else self.config.ignore_paths
        )
        self._install_lock = threading.Lock()
        self._installed_serial: int | None = None

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process the request with contract enforcement.

        Args:
            request: The incoming request.
            call_next: The next middleware/endpoint.

        Returns:
            Response: The endpoint's response, or a structured error response.
        """
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        RequestContext.set_correlation_id(correlation_id)
        RequestContext.set_operation(None)

        with logger.contextualize(correlation_id=correlation_id):
            try:
                response = await self._enforce(request, call_next)
            except PactumError as exc:
                response = contract_error_response(request, exc)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response

    async def _enforce(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if self._ignore is not None and self._ignore(path):
            return await call_next(request)

        contract = await self.context.acquire()
        self._install_path_params(request, contract)

        match = contract.routes.resolve(request.method, path)
        if match is None:
            logger.debug("Undocumented path passed through", method=request.method, path=path)
            return await call_next(request)

        route = match.entry
        RequestContext.set_operation(route.identity)
        with logger.contextualize(operation=route.identity):
            if self.config.security.enabled and contract.security.enabled:
                await contract.security.authorize(route, request)
            if self.config.response.enabled:
                contract.responses.check_acceptable(route, request.headers.get("accept"))

            snapshot = await self._snapshot(request)
            if self.config.request.enabled:
                contract.requests.validate(match, snapshot)
                typed = (route.identity, snapshot.path_params)
            else:
                snapshot.path_params = dict(match.path_params)
                typed = None
            request.state.openapi = OpenApiRequest(
                route=route, snapshot=snapshot, serial=contract.serial
            )

            token = _validated_path_params.set(typed)
            try:
                response = await call_next(request)
            finally:
                _validated_path_params.reset(token)
            if self.config.response.enabled and request.method != "HEAD":
                response = await self._validate_response(contract, route, request, response)
            return response

    async def _snapshot(self, request: Request) -> RequestSnapshot:
        """Capture the request's transport values and parsed body."""
        max_size = self.config.request.max_body_size
        length = request.headers.get("content-length", "")
        if max_size is not None and length.isdigit() and int(length) > max_size:
            msg = f"request body of {length} bytes exceeds the limit of {max_size} bytes"
            raise RequestEntityTooLargeError(msg, path="body")

        content_type = request.headers.get("content-type")
        raw = await request.body()

        query: dict[str, Any] = {}
        for key, value in request.query_params.multi_items():
            query.setdefault(key, []).append(value)

        return RequestSnapshot(
            method=request.method,
            path=request.url.path,
            query=query,
            headers={key.lower(): value for key, value in request.headers.items()},
            cookies=dict(request.cookies),
            body=parse_body(raw, content_type, max_size=max_size),
            content_type=content_type,
        )

    async def _validate_response(
        self,
        contract: LoadedContract,
        route: RouteEntry,
        request: Request,
        response: Response,
    ) -> Response:
        """Buffer the produced body, validate it and send it on unchanged."""
        chunks = [chunk async for chunk in response.body_iterator]  # type: ignore[attr-defined]
        raw = b"".join(c if isinstance(c, bytes) else c.encode() for c in chunks)
        content_type = response.headers.get("content-type")
        try:
            body = parse_body(raw, content_type)
        except MalformedBodyError:
            body = raw

        contract.responses.validate(
            route, response.status_code, body, content_type, request=request
        )

        rebuilt = Response(
            content=raw,
            status_code=response.status_code,
            background=response.background,
        )
        rebuilt.raw_headers = list(response.raw_headers)
        return rebuilt

    def _install_path_params(self, request: Request, contract: LoadedContract) -> None:
        """Bind the host application's routes to documented operations.

        Runs once per loaded contract. The path convertors of every bound
        host route are wrapped in a ``ContractConvertor`` so routing hands
        endpoints typed values. Host parameter names map to the document's
        by position; routes whose names differ are reported.
        """
        if self._installed_serial == contract.serial:
            return
        with self._install_lock:
            if self._installed_serial == contract.serial:
                return

            by_shape = {(entry.method, _shape(entry.template)): entry for entry in contract.routes}
            bound = 0
            for host_route in getattr(request.app, "routes", []):
                host_path = getattr(host_route, "path", None)
                convertors = getattr(host_route, "param_convertors", None)
                if not host_path or convertors is None:
                    continue
                for key, convertor in convertors.items():
                    if isinstance(convertor, ContractConvertor):
                        convertors[key] = convertor.wrapped

                plain = _CONVERTOR_RE.sub(r"{\1}", host_path)
                host_names = tuple(PLACEHOLDER_RE.findall(plain))
                entries: list[RouteEntry] = []
                for method in getattr(host_route, "methods", None) or ():
                    entry = by_shape.get((method, _shape(host_path)))
                    if entry is None:
                        continue
                    if host_names != entry.path_params:
                        logger.warning(
                            "Route {} {} names path parameters {} but the contract names {}",
                            method,
                            host_path,
                            list(host_names),
                            list(entry.path_params),
                        )
                    entries.append(entry)
                if not entries:
                    continue

                identities = frozenset(entry.identity for entry in entries)
                for host_name, name in zip(host_names, entries[0].path_params, strict=False):
                    if host_name in convertors:
                        convertors[host_name] = ContractConvertor(
                            convertors[host_name], name, identities
                        )
                bound += 1

            self._installed_serial = contract.serial
            logger.debug("Bound {} host routes to documented operations", bound)
