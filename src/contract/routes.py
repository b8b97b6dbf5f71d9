"""Route index: which documented operation does a request implement?

Every (path template, method) pair of the document becomes a ``RouteEntry``
holding an anchored regex for the template (server base path included) and
the ordered names of its path parameters. The ``RouteIndex`` resolves a
concrete method and path to the first matching entry in declaration order,
and tells "known path, wrong method" (405) apart from "unknown path" (404).
"""

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

from src.contract.document import ApiDocument
from src.core.constants import HTTP_METHODS
from src.core.exceptions import ConfigurationError, MethodNotAllowedError, NotFoundError

PLACEHOLDER_RE = re.compile(r"\{([^{}/]+)\}")


def compile_template(template: str) -> tuple[re.Pattern[str], tuple[str, ...]]:
    """Turn an OpenAPI path template into a regex and its placeholder names.

    Args:
        template: Path template such as ``/v1/pets/{petId}``.

    Returns:
        tuple: The anchored pattern and the placeholder names in template order.

    Raises:
        ConfigurationError: If a placeholder name is used twice.
    """
    names: list[str] = []
    parts: list[str] = []
    position = 0
    for placeholder in PLACEHOLDER_RE.finditer(template):
        name = placeholder.group(1)
        if name in names:
            msg = f"Path template '{template}' declares '{{{name}}}' more than once"
            raise ConfigurationError(msg)
        parts.append(re.escape(template[position : placeholder.start()]))
        # Group names must be identifiers; parameter names need not be
        parts.append(f"(?P<p{len(names)}>[^/]+)")
        names.append(name)
        position = placeholder.end()
    parts.append(re.escape(template[position:]))
    return re.compile("^" + "".join(parts) + "$"), tuple(names)


def operation_parameters(
    path_item: dict[str, Any], operation: dict[str, Any]
) -> list[dict[str, Any]]:
    """Merge path-item and operation parameters; the operation wins per (name, in)."""
    merged: dict[tuple[str, str], dict[str, Any]] = {}
    for parameter in [*path_item.get("parameters", []), *operation.get("parameters", [])]:
        merged[(parameter.get("name", ""), parameter.get("in", ""))] = parameter
    return list(merged.values())


@dataclass(frozen=True)
class RouteEntry:
    """Compiled matcher for one operation's path template.

    Attributes:
        method: Upper-case HTTP method.
        template: Full template including the server base path.
        openapi_path: The path key as written in the document.
        pattern: Anchored regex matching concrete paths.
        path_params: Placeholder names in template order.
        operation: The operation object of the document.
        path_item: The path item the operation belongs to.
    """

    method: str
    template: str
    openapi_path: str
    pattern: re.Pattern[str] = field(repr=False, compare=False)
    path_params: tuple[str, ...]
    operation: dict[str, Any] = field(repr=False, compare=False)
    path_item: dict[str, Any] = field(repr=False, compare=False)

    @property
    def identity(self) -> str:
        """Stable identity of the route, e.g. ``GET /v1/pets/{petId}``."""
        return f"{self.method} {self.template}"

    @property
    def parameters(self) -> list[dict[str, Any]]:
        """Effective parameters (path item merged with operation)."""
        return operation_parameters(self.path_item, self.operation)

    def match(self, path: str) -> dict[str, str] | None:
        """Match a concrete path and return its decoded path parameters."""
        found = self.pattern.match(path)
        if found is None:
            return None
        return {
            name: unquote(found.group(f"p{index}"))
            for index, name in enumerate(self.path_params)
        }

    @classmethod
    def build(
        cls,
        method: str,
        base_path: str,
        openapi_path: str,
        path_item: dict[str, Any],
        operation: dict[str, Any],
    ) -> "RouteEntry":
        """Compile one operation and check its path parameters.

        Raises:
            ConfigurationError: If the template placeholders and the declared
                ``in: path`` parameters differ.
        """
        template = f"{base_path}{openapi_path}"
        pattern, names = compile_template(template)
        declared = {
            p.get("name")
            for p in operation_parameters(path_item, operation)
            if p.get("in") == "path"
        }
        if declared != set(names):
            msg = (
                f"{method.upper()} {openapi_path}: path template placeholders "
                f"{sorted(names)} do not match declared path parameters {sorted(declared)}"
            )
            raise ConfigurationError(msg)
        return cls(
            method=method.upper(),
            template=template,
            openapi_path=openapi_path,
            pattern=pattern,
            path_params=names,
            operation=operation,
            path_item=path_item,
        )


@dataclass(frozen=True)
class RouteMatch:
    """A resolved route with the raw path parameter values of one request."""

    entry: RouteEntry
    path_params: dict[str, str]


class RouteIndex:
    """Ordered collection of route entries.

    Args:
        entries: Entries in declaration order.
        ignore_undocumented: Resolve unknown paths to ``None`` instead of 404.
    """

    def __init__(
        self, entries: Sequence[RouteEntry], *, ignore_undocumented: bool = False
    ) -> None:
        self._entries = tuple(entries)
        self.ignore_undocumented = ignore_undocumented

    @classmethod
    def build(
        cls, document: ApiDocument, *, ignore_undocumented: bool = False
    ) -> "RouteIndex":
        """Build the index for every (path template, method) of a document."""
        entries = [
            RouteEntry.build(method, base_path, openapi_path, path_item, operation)
            for base_path in document.base_paths
            for openapi_path, path_item in (document.spec.get("paths") or {}).items()
            for method in HTTP_METHODS
            if isinstance(operation := path_item.get(method), dict)
        ]
        return cls(entries, ignore_undocumented=ignore_undocumented)

    def __iter__(self) -> Iterator[RouteEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def find(self, method: str, template: str) -> RouteEntry | None:
        """Look up an entry by method and full template."""
        return next(
            (e for e in self._entries if e.method == method.upper() and e.template == template),
            None,
        )

    def resolve(self, method: str, path: str) -> RouteMatch | None:
        """Resolve a request to the operation it implements.

        Args:
            method: Request method.
            path: Concrete request path (a trailing slash is ignored).

        Returns:
            RouteMatch | None: The match, or None for an undocumented path
            when ``ignore_undocumented`` is set.

        Raises:
            MethodNotAllowedError: The path is documented for other methods only.
            NotFoundError: No template matches the path.
        """
        method = method.upper()
        if len(path) > 1 and path.endswith("/"):
            path = path.rstrip("/") or "/"

        allowed: list[str] = []
        head_fallback: RouteMatch | None = None
        for entry in self._entries:
            params = entry.match(path)
            if params is None:
                continue
            if entry.method == method:
                return RouteMatch(entry=entry, path_params=params)
            if method == "HEAD" and entry.method == "GET" and head_fallback is None:
                head_fallback = RouteMatch(entry=entry, path_params=params)
            if entry.method not in allowed:
                allowed.append(entry.method)

        if head_fallback is not None:
            return head_fallback
        if allowed:
            msg = f"{method} method not allowed"
            raise MethodNotAllowedError(msg, path=path, allowed=allowed)
        if self.ignore_undocumented:
            return None
        raise NotFoundError("not found", path=path)
