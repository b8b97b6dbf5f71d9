"""Named serialization formats (SerDes).

A SerDes entry binds a schema ``format`` name to a pair of transforms
between the wire representation (a string) and an in-memory value. The
request validator applies ``deserialize`` to validated request values; the
response validator applies ``serialize`` before validating a produced body.

Built-in entries cover ``date`` and ``date-time``. User entries override
built-ins with the same format name.
"""

from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from types import MappingProxyType
from typing import Any

from src.core.constants import SERDES_KEY
from src.core.exceptions import ValidationError, ValidationErrorItem


@dataclass(frozen=True, slots=True)
class SerDes:
    """A named bidirectional transform between a wire string and a typed value.

    Attributes:
        format: Schema ``format`` this entry applies to.
        serialize: Typed value -> wire string.
        deserialize: Wire string -> typed value.
    """

    format: str
    serialize: Callable[[Any], str] | None = None
    deserialize: Callable[[str], Any] | None = None


def _serialize_date(value: Any) -> Any:  # noqa: ANN401 - passes through non-dates
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def _serialize_date_time(value: Any) -> Any:  # noqa: ANN401 - passes through non-datetimes
    """RFC 3339 text; UTC is written as ``Z`` and whole milliseconds keep three digits."""
    if not isinstance(value, datetime):
        return value
    if value.microsecond == 0:
        timespec = "seconds"
    elif value.microsecond % 1000 == 0:
        timespec = "milliseconds"
    else:
        timespec = "microseconds"
    text = value.isoformat(timespec=timespec)
    if value.utcoffset() == timedelta(0):
        text = text.removesuffix("+00:00") + "Z"
    return text


DATE = SerDes(format="date", serialize=_serialize_date, deserialize=date.fromisoformat)
DATE_TIME = SerDes(
    format="date-time",
    serialize=_serialize_date_time,
    deserialize=datetime.fromisoformat,
)

DEFAULT_SERDES: tuple[SerDes, ...] = (DATE, DATE_TIME)


class SerDesRegistry(Mapping[str, SerDes]):
    """Read-only table of SerDes entries keyed by format name.

    Args:
        entries: User entries; they override built-ins of the same format.
        include_defaults: Whether to start from the built-in entries.
    """

    def __init__(
        self, entries: Iterable[SerDes] = (), *, include_defaults: bool = True
    ) -> None:
        table: dict[str, SerDes] = {}
        if include_defaults:
            table.update((entry.format, entry) for entry in DEFAULT_SERDES)
        table.update((entry.format, entry) for entry in entries)
        self._entries = MappingProxyType(table)

    def __getitem__(self, format_name: str) -> SerDes:
        return self._entries[format_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"SerDesRegistry({sorted(self._entries)})"


type AlternativeSelector = Callable[[Any, dict[str, Any]], Any]


def transform_value(
    value: Any,  # noqa: ANN401 - any JSON value
    schema: Any,  # noqa: ANN401 - any schema node
    registry: Mapping[str, SerDes],
    *,
    deserialize: bool,
    location: str,
    select: AlternativeSelector | None = None,
) -> Any:  # noqa: ANN401
    """Apply SerDes transforms to every tagged node of a value.

    The walk follows the schema: properties, ``additionalProperties``,
    array items, ``allOf`` members and the alternative ``select`` picks for
    ``oneOf``/``anyOf``. The input is not modified.

    Args:
        value: Validated value to transform.
        schema: Preprocessed schema of the value.
        registry: SerDes entries by format name.
        deserialize: Wire -> typed when true, typed -> wire otherwise.
        location: Locator prefix used in error items, e.g. ``body``.
        select: Picks the alternative of a ``oneOf``/``anyOf`` node.

    Returns:
        Any: The transformed value.

    Raises:
        ValidationError: If a transform rejects a value.
    """

    def walk(node: Any, current: Any, path: list[str]) -> Any:  # noqa: ANN401
        if not isinstance(current, dict) or node is None:
            return node

        if (fmt := current.get(SERDES_KEY)) and fmt in registry:
            entry = registry[fmt]
            transform = entry.deserialize if deserialize else entry.serialize
            if transform is not None and (not deserialize or isinstance(node, str)):
                try:
                    return transform(node)
                except (TypeError, ValueError) as e:
                    locator = ".".join([location, *path])
                    msg = f"must be a valid {fmt}: {e}"
                    raise ValidationError(
                        msg,
                        errors=[
                            ValidationErrorItem(locator, msg, "format.openapi.validation")
                        ],
                    ) from e

        for member in current.get("allOf", []):
            node = walk(node, member, path)

        if select is not None and ("oneOf" in current or "anyOf" in current):
            alternative = select(node, current)
            if alternative is not None:
                node = walk(node, alternative, path)

        if isinstance(node, dict):
            properties = current.get("properties") or {}
            extra = current.get("additionalProperties")
            node = {
                key: walk(
                    item,
                    properties.get(key, extra if isinstance(extra, dict) else None),
                    [*path, str(key)],
                )
                for key, item in node.items()
            }
        elif isinstance(node, list) and isinstance(current.get("items"), dict):
            node = [
                walk(item, current["items"], [*path, str(index)])
                for index, item in enumerate(node)
            ]
        return node

    return walk(value, schema, [])
