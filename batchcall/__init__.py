"""Batching read-only Ethereum contract calls via Multicall3."""

from ._batching import RawCall, RawResult, chunk_calls
from ._call import Call, describe, describe_with_decoder
from ._client import (
    BadResponseFormat,
    Client,
    ClientSession,
    ContractError,
    ContractLegacyError,
    ContractPanic,
)
from ._contract_abi import (
    ABIDecodingError,
    ABIEncodingError,
    ContractABI,
    Method,
    MethodCall,
    MultiMethod,
)
from ._http_provider_server import HTTPProviderServer
from ._multicall import (
    DEFAULT_MAX_BATCH_SIZE,
    MULTICALL3_ADDRESS,
    AggregationError,
    CallFailed,
    CallResult,
    Multicall,
)
from ._provider import (
    HTTPError,
    HTTPProvider,
    InvalidResponse,
    ProtocolError,
    Provider,
    ProviderError,
    ProviderSession,
    Unreachable,
)

__all__ = [
    "ABIDecodingError",
    "ABIEncodingError",
    "AggregationError",
    "BadResponseFormat",
    "Call",
    "CallFailed",
    "CallResult",
    "Client",
    "ClientSession",
    "ContractABI",
    "ContractError",
    "ContractLegacyError",
    "ContractPanic",
    "DEFAULT_MAX_BATCH_SIZE",
    "HTTPError",
    "HTTPProvider",
    "HTTPProviderServer",
    "InvalidResponse",
    "MULTICALL3_ADDRESS",
    "Method",
    "MethodCall",
    "Multicall",
    "MultiMethod",
    "ProtocolError",
    "Provider",
    "ProviderError",
    "ProviderSession",
    "RawCall",
    "RawResult",
    "Unreachable",
    "chunk_calls",
    "describe",
    "describe_with_decoder",
]
