"""
JSON-RPC 2.0 client for jsonrpc_ws.

JsonRpcClient sends calls over a WebSocket when one is configured and
reachable, and over HTTP POST otherwise. Over HTTP, calls can be collected
into a batch and sent as one request.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .batch import AiohttpTransport, BatchAccumulator, BatchEntry, build_handler_map
from .connection import TransportSelector
from .core import (
    ConfigurationError,
    EnvelopeBuilder,
    ErrorResponse,
    Params,
    ProtocolError,
    Request,
    ResultResponse,
    TransportError,
    classify_response,
)
from .rpc import (
    ErrorCallback,
    HttpTransport,
    MessageHandler,
    PendingCall,
    PendingCallRegistry,
    PersistentTransport,
    ReadyState,
    ResponseRouter,
    SuccessCallback,
)
from .serialize import ParseError, deserialize, serialize

logger = logging.getLogger(__name__)


class ClientState(Enum):
    IDLE = "idle"
    BATCH_OPEN = "batch_open"


class JsonRpcClientOptions:
    """Configuration options for JSON-RPC clients."""

    def __init__(self,
                 http_url: Optional[str] = None,
                 socket_url: Optional[str] = None,
                 on_message: Optional[MessageHandler] = None,
                 get_socket: Optional[Callable[[MessageHandler], Optional[PersistentTransport]]] = None,
                 http_headers: Optional[Dict[str, str]] = None,
                 request_timeout: float = 30.0,
                 connect_timeout: float = 10.0,
                 debug: bool = False):
        """
        Initialize client options.

        Args:
            http_url: URL of the HTTP JSON-RPC endpoint
            socket_url: URL of the WebSocket JSON-RPC endpoint
            on_message: Handler for socket messages that are not responses
            get_socket: Replaces the default socket selection. It receives
                the inbound message handler and must bind it to the socket it
                returns, or return None when no socket is available.
            http_headers: Extra headers sent with every HTTP request
            request_timeout: Total timeout for one HTTP exchange
            connect_timeout: Timeout for the WebSocket opening handshake
            debug: Log every outgoing and incoming message
        """
        self.http_url = http_url
        self.socket_url = socket_url
        self.on_message = on_message
        self.get_socket = get_socket
        self.http_headers = dict(http_headers or {})
        self.request_timeout = request_timeout
        self.connect_timeout = connect_timeout
        self.debug = debug


def error_from_failure_body(raw_body: str) -> Any:
    """
    Best-effort extraction of a JSON-RPC error from a failed HTTP response.

    JSON-RPC servers may answer errors with a non-2xx status. When the body
    is not such an error, it is wrapped as {"error": raw_body}.
    """
    try:
        response = deserialize(raw_body)
    except ParseError:
        return {"error": raw_body}

    if isinstance(response, dict) and "error" in response:
        return response["error"]
    return {"error": raw_body}


class JsonRpcClient:
    """
    Client side of JSON-RPC 2.0 over WebSocket or HTTP.

    Example:
        ```python
        async with JsonRpcClient(http_url="http://localhost:8080/jsonrpc") as client:
            client.start_batch()
            client.call("add", [1, 2], print, print)
            client.notify("log", {"msg": "hello"})
            client.end_batch()
            await client.drain()
        ```
    """

    def __init__(self,
                 http_url: Optional[str] = None,
                 socket_url: Optional[str] = None,
                 options: Optional[JsonRpcClientOptions] = None,
                 http_transport: Optional[HttpTransport] = None):
        self.options = options or JsonRpcClientOptions()
        self._http_url = http_url if http_url is not None else self.options.http_url
        socket_url = socket_url if socket_url is not None else self.options.socket_url
        self._debug = self.options.debug

        self._envelopes = EnvelopeBuilder()
        self._pending = PendingCallRegistry()
        self._batch = BatchAccumulator()
        self._router = ResponseRouter(self._pending, self.options.on_message, self._debug)
        self._selector = TransportSelector(socket_url, connect_timeout=self.options.connect_timeout)
        self._get_socket = self.options.get_socket or self._selector.select
        self._http = http_transport or AiohttpTransport(
            headers=self.options.http_headers,
            timeout=self.options.request_timeout,
        )

    @property
    def state(self) -> ClientState:
        return ClientState.BATCH_OPEN if self._batch.is_active() else ClientState.IDLE

    def call(self,
             method: str,
             params: Params,
             success_cb: Optional[SuccessCallback] = None,
             error_cb: Optional[ErrorCallback] = None) -> None:
        """
        Call a method on the server.

        Args:
            method: The method to run on the server
            params: The params; a list or a dict
            success_cb: Called with the result
            error_cb: Called with the error object

        Raises:
            ConfigurationError: if neither a socket nor an HTTP URL is available
        """
        request = self._envelopes.build_request(method, params)

        # Batching does not apply to the socket
        socket = self._get_socket(self._router.route_message)
        if socket is not None:
            self._pending.register(request["id"], success_cb, error_cb)
            self._socket_send(socket, request)
            return

        self._require_http("call")
        if self._batch.is_active():
            self._batch.enqueue(BatchEntry(request, success_cb, error_cb))
            return

        self._http_post(
            request,
            lambda body: self._on_call_response(body, success_cb, error_cb),
            lambda status, raw_body: self._on_call_failure(status, raw_body, error_cb),
        )

    def notify(self, method: str, params: Params) -> None:
        """
        Send a notification; no response is expected.

        Raises:
            ConfigurationError: if neither a socket nor an HTTP URL is available
        """
        request = self._envelopes.build_notification(method, params)

        socket = self._get_socket(self._router.route_message)
        if socket is not None:
            self._socket_send(socket, request)
            return

        self._require_http("notify")
        if self._batch.is_active():
            self._batch.enqueue(BatchEntry(request))
            return

        self._http_post(
            request,
            lambda body: None,
            lambda status, raw_body: logger.warning(
                f"Notification {method!r} failed with HTTP status {status}: {raw_body!r}"),
        )

    def request(self, method: str, params: Params) -> asyncio.Future:
        """
        Call a method and return a future for its result.

        The future fails with ProtocolError for a JSON-RPC error object, or
        with TransportError when a batch exchange failed. Inside an open
        batch it completes once the batch has been sent with end_batch().
        """
        future = asyncio.get_running_loop().create_future()

        def on_success(result: Any) -> None:
            if not future.done():
                future.set_result(result)

        def on_error(error: Any) -> None:
            if not future.done():
                if isinstance(error, TransportError):
                    future.set_exception(error)
                else:
                    future.set_exception(ProtocolError(error))

        self.call(method, params, on_success, on_error)
        return future

    def start_batch(self) -> None:
        """
        Start collecting calls into a batch.

        Only HTTP calls are collected; with a socket available, calls are
        still sent directly.
        """
        self._batch.start()

    def end_batch(self,
                  all_done_cb: Optional[Callable[[List[Any]], None]] = None,
                  error_cb: Optional[Callable[[TransportError], None]] = None) -> None:
        """
        Send all collected calls as one batch and end batching.

        Each call gets its own callback. Results may be handled in a
        different order than the calls were made.

        Args:
            all_done_cb: Called with the whole response list after every
                response has been handled
            error_cb: Called with a TransportError if the exchange failed;
                each call in the batch also gets it on its error callback
        """
        batch = self._batch.flush_and_clear()
        if not batch:
            return

        handlers = build_handler_map(batch)
        self._http_post(
            [entry.request for entry in batch],
            lambda body: self._router.route_batch(body, handlers, all_done_cb),
            lambda status, raw_body: self._on_batch_failure(status, raw_body, handlers, error_cb),
        )

    def _socket_send(self, socket: PersistentTransport, request: Request) -> None:
        message = serialize(request)
        if self._debug:
            logger.debug(f"--> {message}")

        if socket.ready_state is ReadyState.OPEN:
            socket.send(message)
        else:
            socket.on_open(lambda: socket.send(message))

    def _http_post(self,
                   payload: Any,
                   on_success: Callable[[Any], None],
                   on_failure: Callable[[Optional[int], str], None]) -> None:
        body = serialize(payload)
        if self._debug:
            logger.debug(f"--> POST {self._http_url} {body}")
        self._http.post(self._http_url, body, on_success, on_failure)

    def _require_http(self, operation: str) -> None:
        if self._http_url is None:
            raise ConfigurationError(f"{operation} used with no websocket and no http endpoint")

    def _on_call_response(self,
                          body: Any,
                          success_cb: Optional[SuccessCallback],
                          error_cb: Optional[ErrorCallback]) -> None:
        if self._debug:
            logger.debug(f"<-- {body!r}")

        response = classify_response(body)
        if isinstance(response, ResultResponse):
            if success_cb is not None:
                success_cb(response.result)
        elif isinstance(response, ErrorResponse):
            if error_cb is not None:
                error_cb(response.error)
        else:
            logger.warning(f"Unexpected HTTP response body for JSON-RPC call: {body!r}")
            if error_cb is not None:
                error_cb({"error": body})

    def _on_call_failure(self,
                         status: Optional[int],
                         raw_body: str,
                         error_cb: Optional[ErrorCallback]) -> None:
        logger.warning(f"JSON-RPC call failed with HTTP status {status}")
        if error_cb is not None:
            error_cb(error_from_failure_body(raw_body))

    def _on_batch_failure(self,
                          status: Optional[int],
                          raw_body: str,
                          handlers: Dict[Any, PendingCall],
                          error_cb: Optional[Callable[[TransportError], None]]) -> None:
        error = TransportError(status, raw_body)
        logger.warning(f"JSON-RPC batch failed: {error}")
        self._router.fail_batch(handlers, error)
        if error_cb is not None:
            error_cb(error)

    def get_stats(self) -> Dict[str, int]:
        """Get client statistics."""
        return {
            "pending": len(self._pending),
            "batched": len(self._batch),
            "next_id": self._envelopes.next_id,
        }

    async def drain(self) -> None:
        """Wait for all HTTP exchanges and socket sends started so far."""
        await self._http.drain()
        if self._selector.transport is not None:
            await self._selector.transport.drain()

    async def close(self) -> None:
        """Close the WebSocket and the HTTP session."""
        await self._selector.close()
        await self._http.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
