"""Core application constants."""

# HTTP methods an OpenAPI path item may declare, in document order
HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

# Parameter locations, in the order they are validated
PARAMETER_LOCATIONS = ("path", "query", "headers", "cookies")

# OpenAPI "in" values mapped to request snapshot locations
PARAMETER_IN_TO_LOCATION = {
    "path": "path",
    "query": "query",
    "header": "headers",
    "cookie": "cookies",
}

# Internal schema markers written by the preprocessor
NULLABLE_KEY = "x-pactum-nullable"
DISCRIMINATOR_KEY = "x-pactum-discriminator"
SERDES_KEY = "x-pactum-serdes"
COMPONENT_ID_KEY = "x-pactum-component"

# Operation-level extension overriding the unknown query parameter policy
ALLOW_UNKNOWN_QUERY_EXTENSION = "x-allow-unknown-query-parameters"

# Security and redaction
REDACTED = "[REDACTED]"
