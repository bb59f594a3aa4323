"""
jsonrpc_ws - JSON-RPC 2.0 client over WebSocket and HTTP

This module provides a JSON-RPC 2.0 client that prefers a persistent
WebSocket connection and falls back to HTTP POST, with batching support
for the HTTP transport.
"""

from .core import (
    EnvelopeBuilder,
    JsonRpcClientError,
    ConfigurationError,
    TransportError,
    ProtocolError,
    CorrelationError,
    ResultResponse,
    ErrorResponse,
    Malformed,
    classify_response,
)
from .rpc import (
    ReadyState,
    PersistentTransport,
    HttpTransport,
    PendingCallRegistry,
    ResponseRouter,
)
from .batch import BatchAccumulator, BatchEntry, AiohttpTransport
from .websocket import WebSocketTransport
from .connection import TransportSelector
from .client import JsonRpcClient, JsonRpcClientOptions, ClientState
from .serialize import serialize, deserialize, ParseError

__version__ = "0.1.0"
__all__ = [
    "JsonRpcClient",
    "JsonRpcClientOptions",
    "ClientState",
    "EnvelopeBuilder",
    "JsonRpcClientError",
    "ConfigurationError",
    "TransportError",
    "ProtocolError",
    "CorrelationError",
    "ResultResponse",
    "ErrorResponse",
    "Malformed",
    "classify_response",
    "ReadyState",
    "PersistentTransport",
    "HttpTransport",
    "PendingCallRegistry",
    "ResponseRouter",
    "BatchAccumulator",
    "BatchEntry",
    "AiohttpTransport",
    "WebSocketTransport",
    "TransportSelector",
    "serialize",
    "deserialize",
    "ParseError",
]
