"""
Core JSON-RPC 2.0 types for jsonrpc_ws.

This module contains the request envelope builder, the classification of
inbound response payloads and the exception hierarchy shared by the client
and its transports.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

JSONRPC_VERSION = "2.0"

Params = Union[List[Any], Dict[str, Any]]
Request = Dict[str, Any]


class JsonRpcClientError(Exception):
    """Base class for all errors raised by the client."""


class ConfigurationError(JsonRpcClientError):
    """
    Raised synchronously when a call cannot reach any transport.

    This is a programming error: neither a WebSocket is available nor an
    HTTP endpoint is configured.
    """


class TransportError(JsonRpcClientError):
    """An HTTP exchange failed at the network or status layer."""

    def __init__(self, status: Optional[int], body: str):
        super().__init__(f"HTTP transport failed with status {status}: {body!r}")
        self.status = status
        self.body = body


class ProtocolError(JsonRpcClientError):
    """The server answered with a JSON-RPC error object."""

    def __init__(self, error: Any):
        self.error = error
        super().__init__(f"JSON-RPC error {self.code}: {self.message}")

    @property
    def code(self) -> Optional[int]:
        if isinstance(self.error, dict):
            return self.error.get("code")
        return None

    @property
    def message(self) -> str:
        if isinstance(self.error, dict):
            return str(self.error.get("message", self.error))
        return str(self.error)

    @property
    def data(self) -> Any:
        if isinstance(self.error, dict):
            return self.error.get("data")
        return None


class CorrelationError(JsonRpcClientError):
    """
    A response could not be matched to any pending call.

    Never raised to callers; the router logs it and drops the response.
    """

    def __init__(self, response_id: Any, response: Any):
        if response_id is None:
            reason = "response without id"
        else:
            reason = f"no pending call for id {response_id!r}"
        super().__init__(f"Uncorrelated JSON-RPC response ({reason}): {response!r}")
        self.response_id = response_id
        self.response = response


class EnvelopeBuilder:
    """
    Builds JSON-RPC request objects.

    Each builder owns its own id counter, so ids issued by one client are
    unique and strictly increasing starting at 1.
    """

    def __init__(self, first_id: int = 1):
        self._next_id = first_id

    @property
    def next_id(self) -> int:
        return self._next_id

    def build_request(self, method: str, params: Params) -> Request:
        """Build a call; consumes one id."""
        request = {
            "jsonrpc": JSONRPC_VERSION,
            "method": method,
            "params": params,
            "id": self._next_id,
        }
        self._next_id += 1
        return request

    def build_notification(self, method: str, params: Params) -> Request:
        """Build a notification; the id counter is left untouched."""
        return {
            "jsonrpc": JSONRPC_VERSION,
            "method": method,
            "params": params,
        }


@dataclass(frozen=True)
class ResultResponse:
    id: Any
    result: Any


@dataclass(frozen=True)
class ErrorResponse:
    id: Any
    error: Any


@dataclass(frozen=True)
class Malformed:
    payload: Any


ClassifiedResponse = Union[ResultResponse, ErrorResponse, Malformed]


def is_jsonrpc_message(payload: Any) -> bool:
    """True when payload is an object carrying ``"jsonrpc": "2.0"``."""
    return isinstance(payload, dict) and payload.get("jsonrpc") == JSONRPC_VERSION


def classify_response(payload: Any) -> ClassifiedResponse:
    """
    Classify a decoded payload as a result, an error or something else.

    A payload carrying ``result`` wins over one carrying ``error``. Anything
    that is not a JSON-RPC 2.0 object with one of the two members, such as a
    server-initiated request, is Malformed.
    """
    if not is_jsonrpc_message(payload):
        return Malformed(payload)

    if "result" in payload:
        return ResultResponse(payload.get("id"), payload["result"])

    if "error" in payload:
        return ErrorResponse(payload.get("id"), payload["error"])

    return Malformed(payload)
