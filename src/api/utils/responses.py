"""JSON responses rendered with orjson.

Error bodies carry timestamps and values echoed from requests (which may
include dates the SerDes layer produced), so rendering goes through orjson,
which serializes datetimes, UUIDs and dataclasses natively.
"""

from typing import Any

import orjson
from fastapi.responses import JSONResponse
from pydantic import BaseModel

RENDER_OPTIONS = orjson.OPT_NON_STR_KEYS


class ORJSONResponse(JSONResponse):
    """JSON response class serializing with orjson.

    Attributes:
        media_type: The media type for the response.
    """

    media_type = "application/json"

    def render(self, content: Any) -> bytes:  # noqa: ANN401 - accepts any JSON-serializable content
        """Render the content as JSON using orjson.

        Args:
            content: A Pydantic model or any orjson-serializable value.

        Returns:
            bytes: The JSON-encoded bytes.
        """
        if isinstance(content, BaseModel):
            content = content.model_dump(mode="json", exclude_none=True)
        return orjson.dumps(content, default=str, option=RENDER_OPTIONS)
