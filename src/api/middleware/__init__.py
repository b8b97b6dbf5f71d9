"""Middleware and exception handlers.

- **OpenApiValidatorMiddleware**: Routes, authorizes and validates every
  request (and optionally its response) against the OpenAPI document
- **error_handler**: Renders contract errors and other exceptions as
  ``ErrorResponse`` bodies
"""
