"""
WebSocket transport for jsonrpc_ws.

This module provides the persistent transport used by the client when a
WebSocket endpoint is configured. The opening handshake runs in the
background; messages sent before it completes are queued with on_open().
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .rpc import MessageHandler, PersistentTransport, ReadyState

logger = logging.getLogger(__name__)


class WebSocketTransport(PersistentTransport):
    """WebSocket transport implementation."""

    def __init__(self,
                 url: str,
                 connect_timeout: float = 10.0,
                 additional_headers: Optional[Dict[str, str]] = None):
        """
        Start connecting to url.

        Must be called with a running event loop.

        Args:
            url: WebSocket URL, e.g. "ws://localhost:8080/jsonrpc"
            connect_timeout: Timeout for the opening handshake
            additional_headers: Extra headers for the opening handshake
        """
        self._url = url
        self._connect_timeout = connect_timeout
        self._additional_headers = additional_headers
        self._state = ReadyState.CONNECTING
        self._websocket: Optional[ClientConnection] = None
        self._message_handler: Optional[MessageHandler] = None
        self._open_handlers: List[Callable[[], None]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._run_task = asyncio.create_task(self._run())

    @property
    def url(self) -> str:
        return self._url

    @property
    def ready_state(self) -> ReadyState:
        return self._state

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handler = handler

    def on_open(self, handler: Callable[[], None]) -> None:
        if self._state is ReadyState.OPEN:
            handler()
        elif self._state is ReadyState.CONNECTING:
            self._open_handlers.append(handler)
        else:
            logger.warning(f"Dropping open handler for closed WebSocket {self._url}")

    def send(self, message: str) -> None:
        """Send a message over the WebSocket."""
        if self._state is not ReadyState.OPEN:
            raise RuntimeError("Cannot send on a WebSocket that is not open")

        task = asyncio.create_task(self._send_safe(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send_safe(self, message: str) -> None:
        try:
            await self._websocket.send(message)
        except ConnectionClosed as e:
            logger.warning(f"WebSocket send failed, connection closed: {e}")
            self._state = ReadyState.CLOSED

    async def _run(self) -> None:
        """Open the connection, then pump inbound messages until it closes."""
        try:
            self._websocket = await connect(
                self._url,
                open_timeout=self._connect_timeout,
                additional_headers=self._additional_headers,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            self._state = ReadyState.CLOSED
            self._open_handlers.clear()
            logger.error(f"Failed to connect WebSocket {self._url}: {e!r}")
            return

        if self._state is not ReadyState.CONNECTING:
            # close() was called during the handshake
            await self._websocket.close()
            self._state = ReadyState.CLOSED
            return

        self._state = ReadyState.OPEN
        logger.info(f"WebSocket connected to {self._url}")

        handlers, self._open_handlers = self._open_handlers, []
        for handler in handlers:
            handler()

        try:
            async for message in self._websocket:
                self._dispatch(message)
        except ConnectionClosed as e:
            logger.warning(f"WebSocket {self._url} closed with error: {e}")
        finally:
            self._state = ReadyState.CLOSED
            logger.info(f"WebSocket {self._url} closed")

    def _dispatch(self, message: Any) -> None:
        if self._message_handler is None:
            return
        try:
            self._message_handler(message)
        except Exception:
            logger.exception(f"Error handling message from WebSocket {self._url}")

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Close the WebSocket connection."""
        if self._state is ReadyState.CLOSED:
            return

        self._state = ReadyState.CLOSING
        await self.drain()

        if self._websocket is not None:
            await self._websocket.close()

        try:
            await self._run_task
        except asyncio.CancelledError:
            pass
        self._state = ReadyState.CLOSED
