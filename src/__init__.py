"""Pactum - OpenAPI contract enforcement for ASGI services.

Pactum sits inside a Starlette/FastAPI request pipeline and enforces that
requests, and optionally responses, conform to an OpenAPI 3.0 or 3.1
document.

Architecture Overview:
- **Contract Layer**: Route index, schema preprocessing, cached validators,
  request/response validation and security evaluation
- **API Layer**: Validator middleware, error responses and app factory
- **Core Layer**: Configuration, logging, exceptions and request context
"""
