"""
Persistent transport selection for jsonrpc_ws.

The selector owns the client's single WebSocket handle and decides, for
every outgoing message, whether the persistent transport can be used.
"""

import asyncio
import logging
from typing import Callable, Optional

from .rpc import MessageHandler, PersistentTransport, ReadyState
from .websocket import WebSocketTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], PersistentTransport]


def _has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class TransportSelector:
    """
    Hands out the live persistent transport, creating it on demand.

    A handle that is CONNECTING or OPEN is reused as is. A CLOSING or CLOSED
    handle is discarded and replaced; the inbound message handler is
    registered once, on the handle that was just created.
    """

    def __init__(self,
                 socket_url: Optional[str],
                 transport_factory: Optional[TransportFactory] = None,
                 connect_timeout: float = 10.0):
        self._socket_url = socket_url
        self._connect_timeout = connect_timeout
        self._transport_factory = transport_factory or self._default_factory
        self._transport: Optional[PersistentTransport] = None

    @property
    def transport(self) -> Optional[PersistentTransport]:
        """The cached handle, live or not."""
        return self._transport

    def select(self, on_message: MessageHandler) -> Optional[PersistentTransport]:
        """
        Return a usable persistent transport, or None to use HTTP.

        None is returned when no socket URL is configured, or when there is no
        running event loop to drive a socket.
        """
        if self._socket_url is None:
            return None

        if not _has_running_loop():
            logger.debug("No running event loop, persistent transport unavailable")
            return None

        if self._transport is None or self._transport.ready_state in (ReadyState.CLOSING, ReadyState.CLOSED):
            if self._transport is not None:
                logger.info(f"Replacing closed persistent transport for {self._socket_url}")
            self._transport = self._transport_factory(self._socket_url)
            self._transport.on_message(on_message)

        return self._transport

    def _default_factory(self, url: str) -> PersistentTransport:
        return WebSocketTransport(url, connect_timeout=self._connect_timeout)

    async def close(self) -> None:
        if self._transport is not None:
            await self._transport.close()
            self._transport = None
