"""
Request/response correlation for jsonrpc_ws.

This module defines the transport interfaces the client consumes, the
registry of calls awaiting a response on the persistent transport, and the
router that matches inbound responses to their continuations.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .core import (
    CorrelationError,
    ErrorResponse,
    Malformed,
    ResultResponse,
    classify_response,
)
from .serialize import ParseError, deserialize

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[Any], None]
ErrorCallback = Callable[[Any], None]
MessageHandler = Callable[[Any], None]


class ReadyState(Enum):
    """Liveness of a persistent transport."""
    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


class PersistentTransport(ABC):
    """
    Abstract base class for persistent, bidirectional transports.

    The server may push messages at any time; every inbound message is
    delivered to the handler registered with on_message().
    """

    @property
    @abstractmethod
    def ready_state(self) -> ReadyState:
        """Current liveness state."""
        pass

    @abstractmethod
    def send(self, message: str) -> None:
        """Send a message. Only valid while OPEN."""
        pass

    @abstractmethod
    def on_message(self, handler: MessageHandler) -> None:
        """Set the sink for inbound messages."""
        pass

    @abstractmethod
    def on_open(self, handler: Callable[[], None]) -> None:
        """Register a callback run once the transport becomes OPEN."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the transport."""
        pass

    async def drain(self) -> None:
        """Wait for queued outgoing messages to be written."""
        pass


class HttpTransport(ABC):
    """
    Abstract base class for request/response transports.

    Every post() results in exactly one of on_success(parsed_body) or
    on_failure(status, raw_body) being called later on the event loop.
    """

    @abstractmethod
    def post(self,
             url: str,
             body: str,
             on_success: Callable[[Any], None],
             on_failure: Callable[[Optional[int], str], None]) -> None:
        """Start a POST exchange."""
        pass

    async def drain(self) -> None:
        """Wait for all started exchanges to finish."""
        pass

    async def close(self) -> None:
        """Release resources held by the transport."""
        pass


@dataclass
class PendingCall:
    """Continuations waiting for the response to one request."""
    success_cb: Optional[SuccessCallback] = None
    error_cb: Optional[ErrorCallback] = None


def is_correlatable(response_id: Any) -> bool:
    """Only integer and string ids can name a pending call."""
    return isinstance(response_id, (int, str)) and not isinstance(response_id, bool)


class PendingCallRegistry:
    """
    Calls dispatched over the persistent transport, keyed by request id.

    resolve() and reject() remove the entry before invoking the continuation,
    so a continuation that dispatches new calls never sees its own entry.
    """

    def __init__(self):
        self._calls: Dict[Any, PendingCall] = {}

    def register(self,
                 request_id: Any,
                 success_cb: Optional[SuccessCallback],
                 error_cb: Optional[ErrorCallback]) -> None:
        self._calls[request_id] = PendingCall(success_cb, error_cb)

    def has(self, request_id: Any) -> bool:
        return is_correlatable(request_id) and request_id in self._calls

    def resolve(self, request_id: Any, result: Any) -> bool:
        """Consume the entry for request_id and pass it the result."""
        entry = self._consume(request_id)
        if entry is None:
            return False
        if entry.success_cb is not None:
            entry.success_cb(result)
        return True

    def reject(self, request_id: Any, error: Any) -> bool:
        """Consume the entry for request_id and pass it the error object."""
        entry = self._consume(request_id)
        if entry is None:
            return False
        if entry.error_cb is not None:
            entry.error_cb(error)
        return True

    def _consume(self, request_id: Any) -> Optional[PendingCall]:
        if not is_correlatable(request_id):
            return None
        return self._calls.pop(request_id, None)

    def __len__(self) -> int:
        return len(self._calls)


class ResponseRouter:
    """
    Routes inbound responses to the continuations waiting for them.

    Messages from the persistent transport are matched against the pending
    call registry. Batch responses from the HTTP transport are matched against
    the handler map built when the batch was flushed.
    """

    def __init__(self,
                 registry: PendingCallRegistry,
                 on_message: Optional[MessageHandler] = None,
                 debug: bool = False):
        self._registry = registry
        self._on_message = on_message
        self._debug = debug

    def route_message(self, message: Any) -> None:
        """
        Handle one message received on the persistent transport.

        Anything that is not a JSON-RPC 2.0 response is handed verbatim to
        the external message handler, if there is one.
        """
        if self._debug:
            logger.debug(f"<-- {message!r}")

        try:
            payload = deserialize(message)
        except ParseError:
            self._fall_through(message)
            return

        response = classify_response(payload)

        if isinstance(response, Malformed):
            self._fall_through(message)
            return

        if isinstance(response, ResultResponse):
            if self._registry.resolve(response.id, response.result):
                return
        elif isinstance(response, ErrorResponse):
            if self._registry.reject(response.id, response.error):
                return

        logger.warning(str(CorrelationError(response.id, payload)))

    def route_batch(self,
                    responses: Any,
                    handlers: Dict[Any, PendingCall],
                    all_done_cb: Optional[Callable[[List[Any]], None]] = None) -> None:
        """
        Handle the response array of one batch exchange.

        Every element is matched by id against handlers. Elements that cannot
        be matched are logged. all_done_cb always runs afterwards with the
        full response list. Exceptions raised by callbacks are logged.
        """
        if self._debug:
            logger.debug(f"<-- batch {responses!r}")

        if responses is None:
            responses = []
        elif not isinstance(responses, list):
            # Servers answer an invalid batch with a single error object
            responses = [responses]

        for payload in responses:
            response = classify_response(payload)

            if isinstance(response, Malformed):
                logger.warning(f"Ignoring malformed element in batch response: {payload!r}")
                continue

            entry = handlers.pop(response.id, None) if is_correlatable(response.id) else None
            if entry is None:
                logger.warning(str(CorrelationError(response.id, payload)))
                continue

            if isinstance(response, ResultResponse):
                self._invoke(entry.success_cb, response.result)
            else:
                self._invoke(entry.error_cb, response.error)

        self._invoke(all_done_cb, responses)

    def fail_batch(self, handlers: Dict[Any, PendingCall], error: Exception) -> None:
        """Pass a failed batch exchange's error to every call still waiting in it."""
        for entry in handlers.values():
            self._invoke(entry.error_cb, error)
        handlers.clear()

    def _invoke(self, callback: Optional[Callable[[Any], None]], value: Any) -> None:
        # Callback errors never stop the rest of the batch
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Error in batch response callback")

    def _fall_through(self, message: Any) -> None:
        if self._on_message is not None:
            self._on_message(message)
