"""
Tests for JsonRpcClient dispatch over the persistent and HTTP transports.
"""

import asyncio
import logging

import pytest

from jsonrpc_ws import (
    ClientState,
    ConfigurationError,
    JsonRpcClient,
    JsonRpcClientOptions,
    ProtocolError,
    ReadyState,
    TransportError,
)
from jsonrpc_ws.batch import AiohttpTransport

from conftest import FakeSocket


def socket_client(socket, fake_http=None, **kwargs) -> JsonRpcClient:
    options = JsonRpcClientOptions(get_socket=socket.getter(), **kwargs)
    return JsonRpcClient(http_url="http://rpc/", options=options, http_transport=fake_http)


class TestOptions:
    """Test client configuration."""

    def test_default_options(self):
        options = JsonRpcClientOptions()

        assert options.http_url is None
        assert options.socket_url is None
        assert options.on_message is None
        assert options.get_socket is None
        assert options.http_headers == {}
        assert options.request_timeout == 30.0
        assert options.connect_timeout == 10.0
        assert options.debug is False

    def test_keywords_override_options(self, fake_http):
        options = JsonRpcClientOptions(http_url="http://options/")
        client = JsonRpcClient(http_url="http://keyword/", options=options, http_transport=fake_http)

        client.call("m", [])
        assert fake_http.exchanges[0].url == "http://keyword/"
        assert options.http_url == "http://options/"

    def test_default_http_transport(self):
        client = JsonRpcClient(http_url="http://rpc/")
        assert isinstance(client._http, AiohttpTransport)


class TestSocketDispatch:
    """Test calls over the persistent transport."""

    def test_ids_increase_and_responses_match_out_of_order(self, fake_socket):
        client = socket_client(fake_socket)
        results = {}

        for name in ("a", "b", "c"):
            client.call(name, [], lambda result, name=name: results.setdefault(name, result))

        assert [r["id"] for r in fake_socket.sent_requests()] == [1, 2, 3]

        fake_socket.receive({"jsonrpc": "2.0", "id": 3, "result": "C"})
        fake_socket.receive({"jsonrpc": "2.0", "id": 1, "result": "A"})
        fake_socket.receive({"jsonrpc": "2.0", "id": 2, "result": "B"})

        assert results == {"a": "A", "b": "B", "c": "C"}
        assert client.get_stats()["pending"] == 0

    def test_error_response_rejects_matching_call(self, fake_socket):
        client = socket_client(fake_socket)
        results, errors = [], []
        client.call("a", [], results.append, errors.append)

        fake_socket.receive({"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "x"}})

        assert results == []
        assert errors == [{"code": -32000, "message": "x"}]

    def test_unknown_and_null_ids_invoke_nothing(self, fake_socket, caplog):
        client = socket_client(fake_socket)
        calls = []
        client.call("a", [], calls.append, calls.append)

        with caplog.at_level(logging.WARNING):
            fake_socket.receive({"jsonrpc": "2.0", "id": 42, "result": "?"})
            fake_socket.receive({"jsonrpc": "2.0", "id": None, "error": {"code": -32700}})

        assert calls == []
        assert client.get_stats()["pending"] == 1
        assert len(caplog.records) == 2

    def test_second_response_for_same_id_is_dropped(self, fake_socket):
        client = socket_client(fake_socket)
        results = []
        client.call("a", [], results.append)

        fake_socket.receive({"jsonrpc": "2.0", "id": 1, "result": "first"})
        fake_socket.receive({"jsonrpc": "2.0", "id": 1, "result": "second"})

        assert results == ["first"]

    def test_notify_registers_nothing(self, fake_socket):
        pushed = []
        client = socket_client(fake_socket, on_message=pushed.append)
        client.notify("log", {"msg": "hi"})

        sent = fake_socket.sent_requests()
        assert sent == [{"jsonrpc": "2.0", "method": "log", "params": {"msg": "hi"}}]
        assert client.get_stats() == {"pending": 0, "batched": 0, "next_id": 1}

        # An echoing transport sends the notification straight back
        fake_socket.receive(fake_socket.sent[0])
        assert pushed == [fake_socket.sent[0]]

    def test_socket_call_bypasses_open_batch(self, fake_socket, fake_http):
        client = socket_client(fake_socket, fake_http)
        client.start_batch()
        client.call("a", [])
        client.notify("n", [])

        assert len(fake_socket.sent) == 2
        assert client.state is ClientState.BATCH_OPEN
        assert client.get_stats()["batched"] == 0

        client.end_batch()
        assert fake_http.exchanges == []

    def test_malformed_message_goes_to_external_handler(self, fake_socket):
        pushed = []
        client = socket_client(fake_socket, on_message=pushed.append)
        client.notify("x", [])

        fake_socket.receive("<<garbage")
        fake_socket.receive('{"jsonrpc": "2.0", "method": "server_push", "params": []}')

        assert pushed == ["<<garbage", '{"jsonrpc": "2.0", "method": "server_push", "params": []}']

    def test_send_waits_for_open(self):
        socket = FakeSocket(ReadyState.CONNECTING)
        client = socket_client(socket)
        client.call("a", [])
        client.call("b", [])

        assert socket.sent == []
        assert client.get_stats()["pending"] == 2

        socket.open()
        assert [r["method"] for r in socket.sent_requests()] == ["a", "b"]

    def test_handler_registered_once(self, fake_socket):
        client = socket_client(fake_socket)
        client.call("a", [])
        client.call("b", [])
        client.notify("c", [])
        assert fake_socket.handler_registrations == 1

    def test_call_from_continuation(self, fake_socket):
        client = socket_client(fake_socket)
        results = []

        def chain(result):
            results.append(result)
            client.call("second", [result], results.append)

        client.call("first", [], chain)
        fake_socket.receive({"jsonrpc": "2.0", "id": 1, "result": 10})
        assert fake_socket.sent_requests()[-1] == {"jsonrpc": "2.0", "method": "second", "params": [10], "id": 2}

        fake_socket.receive({"jsonrpc": "2.0", "id": 2, "result": 20})
        assert results == [10, 20]

    def test_debug_logs_messages(self, fake_socket, caplog):
        client = socket_client(fake_socket, debug=True)
        with caplog.at_level(logging.DEBUG, logger="jsonrpc_ws"):
            client.call("a", [])
            fake_socket.receive({"jsonrpc": "2.0", "id": 1, "result": 1})

        messages = [record.getMessage() for record in caplog.records]
        assert any(message.startswith("-->") for message in messages)
        assert any(message.startswith("<--") for message in messages)


class TestHttpDispatch:
    """Test single calls over the HTTP transport."""

    def test_no_transport_raises_synchronously(self, fake_http):
        client = JsonRpcClient(http_transport=fake_http)

        with pytest.raises(ConfigurationError):
            client.call("a", [])
        with pytest.raises(ConfigurationError):
            client.notify("n", [])
        assert fake_http.exchanges == []

    def test_socket_url_without_event_loop_uses_http(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", socket_url="ws://rpc/", http_transport=fake_http)
        client.call("a", [])
        assert len(fake_http.exchanges) == 1

    def test_success(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        results, errors = [], []
        client.call("add", [1, 2], results.append, errors.append)

        assert fake_http.exchanges[0].payload == {"jsonrpc": "2.0", "method": "add", "params": [1, 2], "id": 1}
        fake_http.respond({"jsonrpc": "2.0", "id": 1, "result": 3})

        assert results == [3]
        assert errors == []

    def test_error_body_only_calls_error_callback(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        results, errors = [], []
        client.call("add", [], results.append, errors.append)

        fake_http.respond({"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid params"}})

        assert results == []
        assert errors == [{"code": -32602, "message": "Invalid params"}]

    def test_failure_with_jsonrpc_error_body(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        errors = []
        client.call("a", [], None, errors.append)

        fake_http.fail(500, '{"jsonrpc": "2.0", "id": 1, "error": {"code": -32603, "message": "Internal"}}')
        assert errors == [{"code": -32603, "message": "Internal"}]

    def test_failure_with_opaque_body(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        errors = []
        client.call("a", [], None, errors.append)

        fake_http.fail(503, "<html>Service Unavailable</html>")
        assert errors == [{"error": "<html>Service Unavailable</html>"}]

    def test_unexpected_body_is_an_error(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        results, errors = [], []
        client.call("a", [], results.append, errors.append)

        fake_http.respond(None)
        assert results == []
        assert errors == [{"error": None}]

    def test_notify(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        client.notify("ping", [])

        assert fake_http.exchanges[0].payload == {"jsonrpc": "2.0", "method": "ping", "params": []}
        fake_http.respond(None)
        fake_http.fail(500, "ignored")

    def test_ids_shared_across_transports(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        client.call("a", [])
        client.start_batch()
        client.call("b", [])
        client.end_batch()

        assert fake_http.exchanges[0].payload["id"] == 1
        assert fake_http.exchanges[1].payload[0]["id"] == 2


class TestRequestFuture:
    """Test the awaitable wrapper around call()."""

    @pytest.mark.asyncio
    async def test_result(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        future = client.request("add", [1, 2])
        fake_http.respond({"jsonrpc": "2.0", "id": 1, "result": 3})

        assert await future == 3

    @pytest.mark.asyncio
    async def test_protocol_error(self, fake_socket):
        client = socket_client(fake_socket)
        future = client.request("a", [])
        fake_socket.receive({"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "Method not found"}})

        with pytest.raises(ProtocolError) as exc_info:
            await future
        assert exc_info.value.code == -32601

    @pytest.mark.asyncio
    async def test_batched_requests(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        client.start_batch()
        first = client.request("a", [])
        second = client.request("b", [])
        client.end_batch()

        fake_http.respond([
            {"jsonrpc": "2.0", "id": 2, "result": "B"},
            {"jsonrpc": "2.0", "id": 1, "result": "A"},
        ])
        assert await asyncio.gather(first, second) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_failed_batch_fails_requests(self, fake_http):
        client = JsonRpcClient(http_url="http://rpc/", http_transport=fake_http)
        client.start_batch()
        first = client.request("a", [])
        second = client.request("b", [])
        client.end_batch()

        fake_http.fail(502, "Bad Gateway")

        for future in (first, second):
            with pytest.raises(TransportError) as exc_info:
                await asyncio.wait_for(future, 1)
            assert exc_info.value.status == 502

    @pytest.mark.asyncio
    async def test_configuration_error_is_raised_immediately(self, fake_http):
        client = JsonRpcClient(http_transport=fake_http)
        with pytest.raises(ConfigurationError):
            client.request("a", [])

    @pytest.mark.asyncio
    async def test_context_manager_closes_transports(self, fake_http):
        async with JsonRpcClient(http_url="http://rpc/", http_transport=fake_http) as client:
            assert isinstance(client, JsonRpcClient)

    def test_transport_error_type(self):
        error = TransportError(None, "connection refused")
        assert error.status is None
        assert "connection refused" in str(error)


if __name__ == "__main__":
    pytest.main([__file__])
