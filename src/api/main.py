"""FastAPI application factory with contract enforcement.

``create_app`` builds a FastAPI application whose every request passes
through the OpenAPI validator middleware. Endpoints are added by the
caller; they receive typed request values through ``get_openapi_request``.
"""

from collections.abc import AsyncGenerator, Iterable, Mapping
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from src.api.middleware.error_handler import register_exception_handlers
from src.api.middleware.openapi_validator import OpenApiValidatorMiddleware
from src.api.utils.responses import ORJSONResponse
from src.contract.context import ContractContext, ContractSource
from src.contract.response import ResponseErrorCallback
from src.contract.serdes import SerDes
from src.core.config import Settings, get_settings
from src.core.exceptions import ConfigurationError, PactumError
from src.core.logging import setup_logging
from src.core.types import FormatCheck, PathPredicate, SecurityHandler


@asynccontextmanager
async def lifespan(app_instance: FastAPI) -> AsyncGenerator[None]:
    """Load the contract at startup and drop it at shutdown.

    A failed load is logged, not raised: it is cached, and every request
    receives it as a structured error.

    Args:
        app_instance: The FastAPI application instance.

    Yields:
        None: Nothing is yielded, this is just a lifespan context.
    """
    context: ContractContext = app_instance.state.contract
    try:
        contract = await context.acquire()
    except PactumError as e:
        logger.error("Contract failed to load at startup: {}", e.message)
    else:
        logger.info(
            "Application startup complete - {} v{} ({} documented operations)",
            app_instance.title,
            app_instance.version,
            len(contract.routes),
        )

    yield

    logger.info("Application shutdown initiated")
    context.teardown()
    logger.info("Application shutdown complete")


def create_app(
    settings: Settings | None = None,
    *,
    api_spec: ContractSource | None = None,
    security_handlers: Mapping[str, SecurityHandler] | None = None,
    serdes: Iterable[SerDes] = (),
    formats: Mapping[str, FormatCheck] | None = None,
    on_response_error: ResponseErrorCallback | None = None,
    ignore_paths: PathPredicate | None = None,
) -> FastAPI:
    """Create a FastAPI application enforcing an OpenAPI contract.

    Args:
        settings: Optional settings instance. If not provided, will use get_settings().
        api_spec: Document path, mapping or loader; defaults to the configured path.
        security_handlers: Security handlers keyed by scheme name.
        serdes: User SerDes entries.
        formats: Custom format checks by format name.
        on_response_error: Soft-fail callback for response violations.
        ignore_paths: Predicate overriding the configured ``ignore_paths`` regex.

    Returns:
        FastAPI: Configured FastAPI application instance.

    Raises:
        ConfigurationError: If no API document is configured.
    """
    if settings is None:
        settings = get_settings()

    setup_logging(settings)

    source = api_spec if api_spec is not None else settings.validator_config.api_spec
    if source is None:
        msg = "No API document configured (set VALIDATOR_CONFIG__API_SPEC)"
        raise ConfigurationError(msg)

    context = ContractContext(
        source,
        settings.validator_config,
        security_handlers=security_handlers,
        serdes=serdes,
        formats=formats,
        on_response_error=on_response_error,
    )

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        # The served contract is the OpenAPI document, not a generated one
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    application.state.contract = context

    register_exception_handlers(application)
    application.add_middleware(
        OpenApiValidatorMiddleware, context=context, ignore_paths=ignore_paths
    )

    return application
