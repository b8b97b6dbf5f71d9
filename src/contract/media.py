"""Media type matching for request bodies, responses and ``Accept`` headers."""

from collections.abc import Iterable


def media_type_essence(content_type: str | None) -> str | None:
    """Return ``type/subtype`` of a content type, lowercased, without parameters."""
    if not content_type:
        return None
    essence = content_type.split(";", 1)[0].strip().lower()
    return essence or None


def select_media_type(declared: Iterable[str], content_type: str | None) -> str | None:
    """Pick the declared media type serving a concrete content type.

    Exact matches win, then ``type/*``, then ``*/*``.

    Args:
        declared: Media type keys of a ``content`` map.
        content_type: Content type of the message, parameters allowed.

    Returns:
        str | None: The matching key as declared, or None.
    """
    essence = media_type_essence(content_type)
    if essence is None:
        return None
    by_essence = {media_type_essence(key): key for key in declared}
    if essence in by_essence:
        return by_essence[essence]
    for candidate in (f"{essence.split('/', 1)[0]}/*", "*/*"):
        if candidate in by_essence:
            return by_essence[candidate]
    return None


def _accept_ranges(accept: str) -> list[str]:
    ranges = []
    for part in accept.split(","):
        media_range, *params = (piece.strip() for piece in part.split(";"))
        quality = 1.0
        for param in params:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        if media_range and quality > 0:
            ranges.append(media_range.lower())
    return ranges


def accepts(accept: str | None, media_type: str) -> bool:
    """Whether an ``Accept`` header admits a media type (wildcards both ways)."""
    if not accept:
        return True
    offered = media_type_essence(media_type) or "*/*"
    offered_type = offered.split("/", 1)[0]
    for media_range in _accept_ranges(accept):
        if media_range in ("*/*", offered) or offered in ("*/*", f"{offered_type}/*"):
            return True
        if media_range.endswith("/*") and media_range[:-2] == offered_type:
            return True
    return False


def is_json(content_type: str | None) -> bool:
    """Whether a content type carries JSON (``application/json`` or ``+json``)."""
    essence = media_type_essence(content_type)
    return essence is not None and (essence == "application/json" or essence.endswith("+json"))
