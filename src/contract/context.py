"""Owned lifecycle of a loaded contract.

``ContractContext`` is the one place holding mutable engine state. It
loads the document on first use, shares that single load between every
request that arrives while it is pending, and publishes the result as an
immutable ``LoadedContract``. A failed load is the permanent outcome until
``reload()`` or ``teardown()``.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger
from starlette.concurrency import run_in_threadpool

from src.contract.cache import ValidatorCache
from src.contract.compiler import SchemaCompiler
from src.contract.document import ApiDocument, build_document, read_document
from src.contract.preprocessor import OperationSchemas, SchemaPreprocessor
from src.contract.request import RequestValidator
from src.contract.response import ResponseErrorCallback, ResponseValidator
from src.contract.routes import RouteIndex
from src.contract.security import SecurityEvaluator
from src.contract.serdes import SerDes, SerDesRegistry
from src.core.config import ValidatorConfig
from src.core.exceptions import LoadError, PactumError
from src.core.types import FormatCheck, SecurityHandler

type ContractSource = (
    str
    | Path
    | Mapping[str, Any]
    | Callable[[], Mapping[str, Any] | Awaitable[Mapping[str, Any]]]
)


@dataclass(frozen=True)
class LoadedContract:
    """Everything derived from one successfully loaded document."""

    document: ApiDocument
    routes: RouteIndex
    schemas: Mapping[str, OperationSchemas]
    cache: ValidatorCache
    requests: RequestValidator
    responses: ResponseValidator
    security: SecurityEvaluator

    @property
    def serial(self) -> int:
        """Serial number of the underlying document."""
        return self.document.serial


def build_contract(
    spec: Mapping[str, Any],
    config: ValidatorConfig,
    *,
    security_handlers: Mapping[str, SecurityHandler] | None = None,
    serdes: Iterable[SerDes] = (),
    formats: Mapping[str, FormatCheck] | None = None,
    on_response_error: ResponseErrorCallback | None = None,
) -> LoadedContract:
    """Build the full engine state for a parsed document.

    Raises:
        LoadError: If the document is not a valid OpenAPI document or cannot
            be dereferenced.
        ConfigurationError: If the contract is malformed.
    """
    document = build_document(spec, validate=config.validate_api_spec)
    routes = RouteIndex.build(document, ignore_undocumented=config.ignore_undocumented)
    registry = SerDesRegistry(serdes)
    schemas = SchemaPreprocessor(document, registry).process(routes)
    compiler = SchemaCompiler(
        document.version, validate_formats=config.validate_formats, formats=formats
    )
    cache = ValidatorCache()
    return LoadedContract(
        document=document,
        routes=routes,
        schemas=schemas,
        cache=cache,
        requests=RequestValidator(schemas, compiler, cache, registry, config.request),
        responses=ResponseValidator(
            schemas, compiler, cache, registry, config.response, on_error=on_response_error
        ),
        security=SecurityEvaluator(document, routes, security_handlers),
    )


class ContractContext:
    """Loads, holds, reloads and drops the contract of one application.

    Args:
        source: Document path, parsed mapping, or (async) callable returning one.
        config: Validator configuration.
        security_handlers: Security handlers keyed by scheme name.
        serdes: User SerDes entries.
        formats: Custom format checks by format name.
        on_response_error: Soft-fail callback for response violations.
    """

    def __init__(
        self,
        source: ContractSource,
        config: ValidatorConfig,
        *,
        security_handlers: Mapping[str, SecurityHandler] | None = None,
        serdes: Iterable[SerDes] = (),
        formats: Mapping[str, FormatCheck] | None = None,
        on_response_error: ResponseErrorCallback | None = None,
    ) -> None:
        self.source = source
        self.config = config
        self._security_handlers = security_handlers
        self._serdes = tuple(serdes)
        self._formats = dict(formats or {})
        self._on_response_error = on_response_error
        self._contract: LoadedContract | None = None
        self._pending: asyncio.Task[LoadedContract] | None = None

    @property
    def contract(self) -> LoadedContract | None:
        """The current contract, if one has been loaded."""
        return self._contract

    async def acquire(self) -> LoadedContract:
        """Return the loaded contract, loading it on first use.

        Concurrent callers share one load. Cancelling a caller does not
        cancel the load.

        Raises:
            LoadError: If the document failed to load (now or earlier).
            ConfigurationError: If the contract is malformed.
        """
        if self._contract is not None:
            return self._contract
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load())
        return await asyncio.shield(self._pending)

    async def reload(self) -> LoadedContract:
        """Load the source again and swap the new contract in.

        Requests holding the previous contract finish against it. On
        failure the previous contract stays in place.
        """
        contract = await self._load()
        logger.info("Contract reloaded", serial=contract.serial)
        return contract

    def teardown(self) -> None:
        """Drop the loaded contract; the next ``acquire()`` loads again."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._contract = None

    async def _load(self) -> LoadedContract:
        spec = await self._read_source()
        try:
            contract = build_contract(
                spec,
                self.config,
                security_handlers=self._security_handlers,
                serdes=self._serdes,
                formats=self._formats,
                on_response_error=self._on_response_error,
            )
        except PactumError as e:
            logger.error("Contract could not be built: {}", e.message, error_code=e.error_code)
            raise
        except Exception as e:
            msg = f"API document could not be processed: {e}"
            raise LoadError(msg, cause=e) from e
        self._contract = contract
        return contract

    async def _read_source(self) -> Mapping[str, Any]:
        source = self.source
        if isinstance(source, str | Path):
            return await run_in_threadpool(read_document, source)
        if isinstance(source, Mapping):
            return source
        try:
            result = source()
            if inspect.isawaitable(result):
                result = await result
        except PactumError:
            raise
        except Exception as e:
            msg = f"API document source failed: {e}"
            raise LoadError(msg, cause=e) from e
        if not isinstance(result, Mapping):
            msg = f"API document source returned {type(result).__name__}, not a mapping"
            raise LoadError(msg)
        return result
