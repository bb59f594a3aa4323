"""
Shared in-memory transports for jsonrpc_ws tests.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import pytest

from jsonrpc_ws.rpc import HttpTransport, PersistentTransport, ReadyState


class FakeSocket(PersistentTransport):
    """Persistent transport that records sends and lets tests push messages."""

    def __init__(self, state: ReadyState = ReadyState.OPEN):
        self.state = state
        self.sent: List[str] = []
        self.handler: Optional[Callable[[Any], None]] = None
        self.handler_registrations = 0
        self.open_handlers: List[Callable[[], None]] = []

    @property
    def ready_state(self) -> ReadyState:
        return self.state

    def send(self, message: str) -> None:
        if self.state is not ReadyState.OPEN:
            raise RuntimeError("Transport not open")
        self.sent.append(message)

    def on_message(self, handler) -> None:
        self.handler = handler
        self.handler_registrations += 1

    def on_open(self, handler) -> None:
        self.open_handlers.append(handler)

    async def close(self) -> None:
        self.state = ReadyState.CLOSED

    def open(self) -> None:
        """Simulate the handshake completing."""
        self.state = ReadyState.OPEN
        handlers, self.open_handlers = self.open_handlers, []
        for handler in handlers:
            handler()

    def receive(self, message: Any) -> None:
        """Simulate an inbound message."""
        if not isinstance(message, str):
            message = json.dumps(message)
        self.handler(message)

    def sent_requests(self) -> List[dict]:
        return [json.loads(message) for message in self.sent]

    def getter(self):
        """A get_socket option that always hands out this socket."""
        def get_socket(on_message):
            if self.handler is None:
                self.on_message(on_message)
            return self
        return get_socket


@dataclass
class Exchange:
    url: str
    body: str
    on_success: Callable[[Any], None]
    on_failure: Callable[[Optional[int], str], None]

    @property
    def payload(self) -> Any:
        return json.loads(self.body)


class FakeHttpTransport(HttpTransport):
    """HTTP transport that records posts; tests answer them explicitly."""

    def __init__(self):
        self.exchanges: List[Exchange] = []

    def post(self, url, body, on_success, on_failure) -> None:
        self.exchanges.append(Exchange(url, body, on_success, on_failure))

    def respond(self, body: Any, index: int = -1) -> None:
        self.exchanges[index].on_success(body)

    def fail(self, status: Optional[int], raw_body: str, index: int = -1) -> None:
        self.exchanges[index].on_failure(status, raw_body)


@pytest.fixture
def fake_socket():
    return FakeSocket()


@pytest.fixture
def fake_http():
    return FakeHttpTransport()
