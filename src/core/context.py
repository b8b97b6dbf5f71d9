"""Request-scoped context for correlation IDs and the resolved operation."""

import uuid
from contextvars import ContextVar

# Context variables for storing request data across async boundaries
_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_operation_var: ContextVar[str | None] = ContextVar("operation", default=None)


class RequestContext:
    """Manages request context using contextvars for async-safe storage.

    The validator middleware stores the correlation ID of the request and
    the identity of the operation it resolved to, so error handlers and log
    records deep in the engine can refer to them without passing the
    request around.
    """

    @staticmethod
    def set_correlation_id(correlation_id: str) -> None:
        """Set the correlation ID for the current context.

        Args:
            correlation_id: The correlation ID to store in the context.
        """
        _correlation_id_var.set(correlation_id)

    @staticmethod
    def get_correlation_id() -> str | None:
        """Get the correlation ID from the current context.

        Returns:
            str | None: The correlation ID if set, None otherwise.
        """
        return _correlation_id_var.get()

    @staticmethod
    def set_operation(operation: str | None) -> None:
        """Set the identity of the operation the request resolved to.

        Args:
            operation: Route identity such as ``"GET /v1/pets/{id}"``.
        """
        _operation_var.set(operation)

    @staticmethod
    def get_operation() -> str | None:
        """Get the resolved operation identity, if routing has happened."""
        return _operation_var.get()

    @staticmethod
    def clear() -> None:
        """Clear all context variables."""
        _correlation_id_var.set(None)
        _operation_var.set(None)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracking.

    Returns:
        str: A string representation of a UUID4.
    """
    return str(uuid.uuid4())


def generate_request_id() -> str:
    """Generate a unique request ID for individual request tracking.

    Returns:
        str: A prefixed UUID4 string in format 'req-<uuid4>'.
    """
    return f"req-{uuid.uuid4()}"
