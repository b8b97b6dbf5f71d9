"""Contract validation engine.

Turns an OpenAPI 3.0/3.1 document into cached validators and enforces it
on requests and responses. The ``ContractContext`` owns the lifecycle; the
API layer wires it into Starlette through the validator middleware.
"""

from src.contract.context import ContractContext, LoadedContract, build_contract
from src.contract.request import RequestSnapshot
from src.contract.routes import RouteEntry, RouteIndex, RouteMatch
from src.contract.serdes import SerDes, SerDesRegistry

__all__ = [
    "ContractContext",
    "LoadedContract",
    "RequestSnapshot",
    "RouteEntry",
    "RouteIndex",
    "RouteMatch",
    "SerDes",
    "SerDesRegistry",
    "build_contract",
]
