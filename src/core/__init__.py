"""Core package for cross-cutting functionality.

- **config**: Pydantic settings for the application and the validator
- **constants**: HTTP methods, parameter locations and internal schema markers
- **context**: Correlation ID and resolved-operation context variables
- **exceptions**: Contract error hierarchy with status codes and error items
- **error_context**: Sensitive data sanitization for safe logging
- **logging**: Loguru setup with console and JSON formatters
- **types**: Type aliases for documents, schemas and handlers
"""
