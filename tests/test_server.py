"""
Loopback tests for Server and Connection.connect().

These bind 127.0.0.1 on an ephemeral port; no external network is used.
"""

import pytest

from mbtcp import (
    Connection,
    ConnectionEstablishmentError,
    ExceptionCode,
    FunctionCode,
    IllegalFunctionError,
    ModbusExceptionPDU,
    ModbusProtocolException,
    ModbusRequest,
    ModbusResponse,
    ModbusTimeoutError,
    Server,
)

pytestmark = pytest.mark.real


@pytest.fixture
def server():
    with Server(0, "127.0.0.1", response_timeout=1000, request_timeout=3000) as srv:
        yield srv


@pytest.fixture
def peers(server):
    """Connected (client, server-side) Connection pair."""
    client = Connection.connect("127.0.0.1", server.port, response_timeout=1000)
    accepted = server.accept(timeout_ms=2000)
    yield client, accepted
    client.close()
    accepted.close()


class TestServerInit:
    @pytest.mark.parametrize(
        "kwargs,match",
        [
            ({"port": -1}, "port must be between"),
            ({"port": 65536}, "port must be between"),
            ({"port": 502, "address": "any"}, "numeric IPv4 literal"),
            ({"port": 502, "backlog": 0}, "backlog must be positive"),
            ({"port": 502, "response_timeout": 0}, "response_timeout must be positive"),
            ({"port": 502, "request_timeout": -1}, "request_timeout must be positive"),
        ],
    )
    def test_invalid_params(self, kwargs, match):
        with pytest.raises(ValueError, match=match):
            Server(**kwargs)

    def test_not_bound_until_listen(self):
        srv = Server(0, "127.0.0.1")
        assert not srv.listening
        assert repr(srv) == "Server(127.0.0.1:0, idle)"

    def test_ephemeral_port_resolved(self, server):
        assert server.listening
        assert server.port > 0

    def test_close_is_idempotent(self):
        srv = Server(0, "127.0.0.1")
        srv.listen()
        srv.close()
        srv.close()
        assert not srv.listening

    def test_port_in_use(self, server):
        other = Server(server.port, "127.0.0.1")
        with pytest.raises(ConnectionEstablishmentError) as exc_info:
            other.listen()
        assert exc_info.value.errno is not None


class TestAccept:
    def test_timeout(self, server):
        with pytest.raises(ModbusTimeoutError) as exc_info:
            server.accept(timeout_ms=50)
        assert exc_info.value.timeout_ms == 50

    def test_accepted_connection_settings(self, peers, server):
        client, accepted = peers
        assert not accepted.closed
        assert accepted.response_timeout == 1000
        assert accepted.request_timeout == 3000


class TestExchange:
    def test_read_holding_registers(self, peers):
        client, accepted = peers
        registers = {0x10: 0x1234, 0x11: 0x00FF}

        client.send_request(ModbusRequest(1, FunctionCode.READ_HOLDING_REGISTERS, 0x10, 2))
        request = accepted.await_request()
        values = [registers[request.address + i] for i in range(request.count)]
        accepted.send_response(ModbusResponse.for_request(request, values))

        response = client.await_response()
        assert response.values == [0x1234, 0x00FF]
        assert accepted.transaction_id == client.transaction_id == 0

    def test_exception_reply(self, peers):
        client, accepted = peers
        client.next_transaction_id = 300

        client.send_request(ModbusRequest(1, FunctionCode.READ_COILS, 0xFFF0, 100))
        request = accepted.await_request()
        accepted.send_exception(ModbusExceptionPDU.for_request(request, ExceptionCode.ILLEGAL_DATA_ADDRESS))

        with pytest.raises(ModbusProtocolException) as exc_info:
            client.await_response()
        assert exc_info.value.exception_code == ExceptionCode.ILLEGAL_DATA_ADDRESS
        assert accepted.transaction_id == 300

    def test_unsupported_function_answered_with_exception(self, peers):
        client, accepted = peers

        client.send_request(b"\x01\x2b\x0e\x01\x00")
        with pytest.raises(IllegalFunctionError) as exc_info:
            accepted.await_request()
        accepted.send_exception(ModbusExceptionPDU(1, exc_info.value.function_code, ExceptionCode.ILLEGAL_FUNCTION))

        with pytest.raises(ModbusProtocolException) as exc_info:
            client.await_response()
        assert exc_info.value.exception_code == ExceptionCode.ILLEGAL_FUNCTION
        assert exc_info.value.function_code == 0x2B

    def test_sequential_exchanges(self, peers):
        client, accepted = peers
        for value in range(5):
            client.send_request(ModbusRequest(1, FunctionCode.WRITE_SINGLE_REGISTER, 7, 1, [value]))
            request = accepted.await_request()
            accepted.send_response(ModbusResponse.for_request(request))
            assert client.await_response().values == [value]
        assert client.next_transaction_id == 5
