"""Loading and dereferencing of OpenAPI documents.

The engine works on a fully dereferenced document: every local ``$ref`` is
replaced by the object it points to, so a schema referenced from several
places becomes one shared subtree and a recursive schema becomes a cycle.
Node identity is preserved on purpose; the preprocessor memoizes by it.

Every successfully built document receives a serial number from a
process-wide monotonically increasing counter, which lets caches tell
documents of different loads apart.
"""

import copy
import itertools
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit

import orjson
import yaml
from loguru import logger
from openapi_spec_validator import validate as validate_openapi
from openapi_spec_validator.validation.exceptions import OpenAPIValidationError

from src.core.constants import COMPONENT_ID_KEY
from src.core.exceptions import LoadError
from src.core.types import ApiSpec

SUPPORTED_VERSIONS = ("3.0", "3.1")

_serial_counter = itertools.count(1)
_serial_lock = threading.Lock()


def next_serial() -> int:
    """Return the next document serial number."""
    with _serial_lock:
        return next(_serial_counter)


@dataclass(frozen=True)
class ApiDocument:
    """An immutable, fully dereferenced API description.

    Attributes:
        spec: The dereferenced document tree.
        serial: Serial number of the load that produced this document.
        version: ``"3.0"`` or ``"3.1"``; selects the schema dialect.
        base_paths: Path prefixes derived from ``servers``.
    """

    spec: ApiSpec
    serial: int
    version: str
    base_paths: tuple[str, ...] = field(default=("",))

    @property
    def security_schemes(self) -> dict[str, Any]:
        """Security scheme definitions keyed by scheme name."""
        return self.spec.get("components", {}).get("securitySchemes", {}) or {}

    @property
    def security(self) -> list[dict[str, list[str]]] | None:
        """Document-level security requirements, or None when not declared."""
        return self.spec.get("security")


def read_document(source: str | Path) -> ApiSpec:
    """Read a YAML or JSON document from disk.

    Args:
        source: Path of the document.

    Returns:
        ApiSpec: The parsed, not yet dereferenced, document.

    Raises:
        LoadError: If the file cannot be read or parsed.
    """
    path = Path(source)
    try:
        raw = path.read_bytes()
        spec = orjson.loads(raw) if path.suffix == ".json" else yaml.safe_load(raw)
    except (OSError, orjson.JSONDecodeError, yaml.YAMLError) as e:
        msg = f"Unable to read API document '{path}': {e}"
        raise LoadError(msg, cause=e) from e

    if not isinstance(spec, dict):
        msg = f"API document '{path}' must contain a mapping at the top level"
        raise LoadError(msg)
    return spec


def resolve_pointer(root: Any, pointer: str) -> Any:  # noqa: ANN401 - any document node
    """Resolve a local JSON pointer (``#/a/b``) against a document.

    Args:
        root: The document root.
        pointer: Local pointer, starting with ``#``.

    Returns:
        Any: The node the pointer designates.

    Raises:
        LoadError: If the pointer is remote or designates nothing.
    """
    if not pointer.startswith("#"):
        msg = f"Remote reference '{pointer}' is not supported"
        raise LoadError(msg)

    node = root
    fragment = pointer[1:].lstrip("/")
    if not fragment:
        return node
    for raw_token in fragment.split("/"):
        token = unquote(raw_token).replace("~1", "/").replace("~0", "~")
        try:
            node = node[int(token)] if isinstance(node, list) else node[token]
        except (KeyError, IndexError, ValueError, TypeError) as e:
            msg = f"Reference '{pointer}' cannot be resolved"
            raise LoadError(msg, cause=e) from e
    return node


def dereference(root: ApiSpec) -> ApiSpec:
    """Replace every local ``$ref`` in place with the object it points to.

    Shared targets stay shared and self references become cycles. Sibling
    keywords next to a ``$ref`` are dropped.

    Args:
        root: Document to dereference; mutated in place.

    Returns:
        ApiSpec: The same document object.

    Raises:
        LoadError: On remote, dangling or circular-only references.
    """
    visited: set[int] = set()

    def target_of(value: Any) -> Any:  # noqa: ANN401
        seen: list[str] = []
        while isinstance(value, dict) and isinstance(value.get("$ref"), str):
            ref = value["$ref"]
            if ref in seen:
                msg = f"Reference cycle without content: {' -> '.join([*seen, ref])}"
                raise LoadError(msg)
            seen.append(ref)
            value = resolve_pointer(root, ref)
        return value

    stack: list[Any] = [root]
    while stack:
        node = stack.pop()
        if id(node) in visited:
            continue
        visited.add(id(node))
        if isinstance(node, dict):
            for key, value in node.items():
                node[key] = resolved = target_of(value)
                if isinstance(resolved, dict | list):
                    stack.append(resolved)
        elif isinstance(node, list):
            for index, value in enumerate(node):
                node[index] = resolved = target_of(value)
                if isinstance(resolved, dict | list):
                    stack.append(resolved)
    return root


def _base_paths(spec: ApiSpec) -> tuple[str, ...]:
    """Derive path prefixes from ``servers`` (variables take their defaults)."""
    paths: list[str] = []
    for server in spec.get("servers") or [{"url": "/"}]:
        url = server.get("url", "/")
        for name, variable in (server.get("variables") or {}).items():
            url = url.replace(f"{{{name}}}", str(variable.get("default", "")))
        path = urlsplit(url).path.rstrip("/")
        if path not in paths:
            paths.append(path)
    return tuple(paths)


def validate_document(spec: Mapping[str, Any]) -> None:
    """Check a parsed document against the OpenAPI schema of its version.

    Raises:
        LoadError: If the document is not a valid OpenAPI document.
    """
    try:
        validate_openapi(dict(spec))
    except OpenAPIValidationError as e:
        location = "/".join(str(part) for part in e.absolute_path) or "(root)"
        msg = f"API document is not a valid OpenAPI document at {location}: {e.message}"
        raise LoadError(msg, cause=e) from e


def build_document(spec: Mapping[str, Any], *, validate: bool = False) -> ApiDocument:
    """Validate, copy and dereference a parsed document.

    Args:
        spec: A parsed OpenAPI document; it is not modified.
        validate: Also check the document against the OpenAPI schema of
            its version.

    Returns:
        ApiDocument: The dereferenced document tagged with a new serial.

    Raises:
        LoadError: If the document is not OpenAPI 3.0/3.1, cannot be
            dereferenced or is not a valid OpenAPI document.
    """
    version_field = str(spec.get("openapi", ""))
    version = version_field[:3]
    if version not in SUPPORTED_VERSIONS:
        msg = f"Unsupported OpenAPI version '{version_field or spec.get('swagger')}'"
        raise LoadError(msg)

    tree = dereference(copy.deepcopy(dict(spec)))
    if validate:
        validate_document(spec)

    for name, schema in (tree.get("components", {}).get("schemas") or {}).items():
        if isinstance(schema, dict):
            schema.setdefault(COMPONENT_ID_KEY, name)

    document = ApiDocument(
        spec=tree,
        serial=next_serial(),
        version=version,
        base_paths=_base_paths(tree),
    )
    logger.info(
        "Loaded OpenAPI {} document '{}'",
        version_field,
        tree.get("info", {}).get("title", "untitled"),
        serial=document.serial,
        paths=len(tree.get("paths") or {}),
    )
    return document
