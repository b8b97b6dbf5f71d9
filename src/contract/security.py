"""Evaluation of OpenAPI security requirements.

A requirement set is an OR of AND-groups: the request is authorized when
every scheme of at least one group is satisfied. Schemes are checked by
handlers registered per scheme name. Without a handler, ``apiKey`` and
``http`` (basic/bearer) schemes fall back to a credential presence check;
any other scheme type fails.

Handler outcomes:

- ``True`` (or an awaitable resolving to it) satisfies the scheme
- ``False`` fails the group
- a ``SecurityError`` fails the group; if no group succeeds the first one
  raised is re-raised, so a handler can answer 403 instead of 401
- any other exception is logged and fails the group
"""

import inspect
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

from src.contract.document import ApiDocument
from src.contract.routes import RouteEntry, RouteIndex
from src.core.exceptions import (
    ConfigurationError,
    SecurityError,
    UnauthorizedError,
    ValidationErrorItem,
)
from src.core.types import SecurityHandler

_HTTP_PREFIXES = {"basic": "basic ", "bearer": "bearer "}


@dataclass(frozen=True, slots=True)
class SecurityRequirement:
    """One (scheme, scopes) pair of an AND-group."""

    scheme: str
    scopes: tuple[str, ...] = ()


type RequirementGroup = tuple[SecurityRequirement, ...]
type RequirementSet = tuple[RequirementGroup, ...]


def requirement_set(
    operation: Mapping[str, Any], document: ApiDocument
) -> RequirementSet | None:
    """Effective requirements of an operation.

    The operation's ``security`` wins when present (an empty list means no
    security); otherwise the document's applies. None when neither declares any.
    """
    raw = operation["security"] if "security" in operation else document.security
    if raw is None:
        return None
    return tuple(
        tuple(SecurityRequirement(name, tuple(scopes or ())) for name, scopes in group.items())
        for group in raw
    )


def credentials_present(scheme: Mapping[str, Any], request: Any) -> bool:  # noqa: ANN401
    """Built-in check: does the request carry the credential a scheme names?"""
    kind = scheme.get("type")
    if kind == "apiKey":
        sources = {
            "header": request.headers,
            "query": request.query_params,
            "cookie": request.cookies,
        }
        source = sources.get(scheme.get("in", ""))
        return bool(source is not None and source.get(scheme.get("name", "")))
    if kind == "http":
        prefix = _HTTP_PREFIXES.get(str(scheme.get("scheme", "")).lower())
        authorization = request.headers.get("authorization", "")
        return (
            prefix is not None
            and authorization.lower().startswith(prefix)
            and len(authorization) > len(prefix)
        )
    return False


class SecurityEvaluator:
    """Authorizes requests against the security requirements of their operation.

    Args:
        document: The dereferenced document.
        routes: Routes whose requirements are resolved up front.
        handlers: Security handlers keyed by scheme name.

    Raises:
        ConfigurationError: If a requirement names an undeclared scheme.
    """

    def __init__(
        self,
        document: ApiDocument,
        routes: RouteIndex,
        handlers: Mapping[str, SecurityHandler] | None = None,
    ) -> None:
        self._schemes = document.security_schemes
        self._handlers = dict(handlers or {})
        self._requirements: dict[str, RequirementSet | None] = {}

        for entry in routes:
            requirements = requirement_set(entry.operation, document)
            for group in requirements or ():
                for requirement in group:
                    if requirement.scheme not in self._schemes:
                        msg = (
                            f"{entry.identity} requires undeclared security scheme "
                            f"'{requirement.scheme}'"
                        )
                        raise ConfigurationError(msg)
            self._requirements[entry.identity] = requirements

        for name in self._handlers.keys() - self._schemes.keys():
            logger.warning("Security handler '{}' matches no declared scheme", name)

    @property
    def enabled(self) -> bool:
        """Security is only evaluated for documents that declare schemes."""
        return bool(self._schemes)

    def requirements(self, route: RouteEntry) -> RequirementSet | None:
        """Effective requirements of a route."""
        return self._requirements.get(route.identity)

    async def authorize(self, route: RouteEntry, request: Any) -> None:  # noqa: ANN401
        """Authorize a request for its route.

        Args:
            route: The resolved route.
            request: The host request, handed to handlers.

        Raises:
            SecurityError: If no requirement group is satisfied.
        """
        groups = self.requirements(route)
        if not groups:
            return

        reasons: list[ValidationErrorItem] = []
        denial: SecurityError | None = None
        for group in groups:
            for requirement in group:
                try:
                    passed = await self._check(requirement, request)
                except SecurityError as e:
                    denial = denial or e
                    reasons.append(_reason(requirement, e.message))
                    break
                except Exception as e:
                    logger.opt(exception=e).warning(
                        "Security handler for '{}' raised", requirement.scheme
                    )
                    reasons.append(_reason(requirement, f"handler raised {type(e).__name__}"))
                    break
                if not passed:
                    reasons.append(_reason(requirement, "credentials missing or rejected"))
                    break
            else:
                return

        if denial is not None:
            raise denial
        logger.info(
            "Request to {} is not authorized",
            route.identity,
            schemes=[item.path for item in reasons],
        )
        raise UnauthorizedError("not authorized", errors=reasons)

    async def _check(self, requirement: SecurityRequirement, request: Any) -> bool:  # noqa: ANN401
        scheme = self._schemes[requirement.scheme]
        handler = self._handlers.get(requirement.scheme)
        if handler is None:
            return credentials_present(scheme, request)
        result = handler(request, list(requirement.scopes), scheme)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)


def _reason(requirement: SecurityRequirement, message: str) -> ValidationErrorItem:
    return ValidationErrorItem(
        f"security.{requirement.scheme}", message, "security.openapi.validation"
    )
