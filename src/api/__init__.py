"""HTTP layer wiring the contract engine into FastAPI.

- **main**: Application factory (``create_app``) and lifespan
- **middleware**: The OpenAPI validator middleware and error handlers
- **schemas**: The structured error response model
- **utils**: orjson-backed JSON responses
"""
