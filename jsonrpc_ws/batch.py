"""
HTTP transport and batching for jsonrpc_ws.

This module implements the request/response transport on top of aiohttp and
the accumulator that collects calls into a single batch POST.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

import aiohttp

from .core import Request
from .rpc import ErrorCallback, HttpTransport, PendingCall, SuccessCallback
from .serialize import ParseError, deserialize

logger = logging.getLogger(__name__)


@dataclass
class BatchEntry:
    """A call or notification held back until the batch is flushed."""
    request: Request
    success_cb: Optional[SuccessCallback] = None
    error_cb: Optional[ErrorCallback] = None


class BatchAccumulator:
    """
    Staging area for calls made while a batch is open.

    The accumulator is inactive (None) outside start()/flush_and_clear().
    """

    def __init__(self):
        self._entries: Optional[List[BatchEntry]] = None

    def start(self) -> None:
        """Open a batch. Opening an already open batch does nothing."""
        if self._entries is None:
            self._entries = []

    def is_active(self) -> bool:
        return self._entries is not None

    def enqueue(self, entry: BatchEntry) -> None:
        if self._entries is None:
            raise RuntimeError("Cannot enqueue into a batch that is not open")
        self._entries.append(entry)

    def flush_and_clear(self) -> List[BatchEntry]:
        """
        Close the batch and return what it held.

        The batch is detached before returning, so calls made from a
        completion callback never land in the batch being sent.
        """
        entries, self._entries = self._entries, None
        return entries or []

    def __len__(self) -> int:
        return len(self._entries) if self._entries is not None else 0


def build_handler_map(entries: List[BatchEntry]) -> Dict[Any, PendingCall]:
    """Map request id to continuations for every call in a batch."""
    handlers = {}
    for entry in entries:
        if "id" in entry.request:
            handlers[entry.request["id"]] = PendingCall(entry.success_cb, entry.error_cb)
    return handlers


class AiohttpTransport(HttpTransport):
    """
    Request/response transport that POSTs JSON bodies with aiohttp.

    One ClientSession is created lazily on the first exchange and reused
    until close().
    """

    def __init__(self,
                 headers: Optional[Dict[str, str]] = None,
                 timeout: float = 30.0):
        """
        Initialize the HTTP transport.

        Args:
            headers: Extra headers sent with every POST
            timeout: Total timeout in seconds for one exchange
        """
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._headers.update(headers or {})
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._tasks: Set[asyncio.Task] = set()

    def post(self,
             url: str,
             body: str,
             on_success: Callable[[Any], None],
             on_failure: Callable[[Optional[int], str], None]) -> None:
        """Schedule a POST on the running event loop."""
        task = asyncio.create_task(self._post(url, body, on_success, on_failure))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    async def _post(self,
                    url: str,
                    body: str,
                    on_success: Callable[[Any], None],
                    on_failure: Callable[[Optional[int], str], None]) -> None:
        try:
            session = self._get_session()
            async with session.post(url, data=body, headers=self._headers) as response:
                status = response.status
                raw = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"HTTP POST to {url} failed: {e!r}")
            on_failure(None, str(e))
            return

        if not 200 <= status < 300:
            on_failure(status, raw.decode("utf-8", errors="replace"))
            return

        # Notifications are commonly answered with an empty body
        if not raw.strip():
            on_success(None)
            return

        try:
            parsed = deserialize(raw)
        except ParseError:
            logger.warning(f"HTTP response from {url} is not JSON")
            on_failure(status, raw.decode("utf-8", errors="replace"))
            return

        on_success(parsed)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Unhandled error in HTTP response callback", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait until every POST started so far, and any it triggered, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._session is not None:
            await self._session.close()
            self._session = None
