"""
mbtcp - Modbus-over-TCP transport.

MBAP framing, transaction-id correlation, timeout-bounded receives and
classified failures for Modbus/TCP clients and servers.

Client:
    from mbtcp import Connection, ModbusRequest, FunctionCode

    with Connection.connect("192.168.0.10", 502, response_timeout=1000) as conn:
        conn.send_request(ModbusRequest(1, FunctionCode.READ_HOLDING_REGISTERS, 0, 4))
        print(conn.await_response().values)

Server:
    from mbtcp import Server, ModbusResponse

    with Server(502) as server:
        conn = server.accept()
        request = conn.await_request()
        conn.send_response(ModbusResponse.for_request(request, [0] * request.count))
"""

from .connection import Connection
from .constants import (
    DEFAULT_RESPONSE_TIMEOUT,
    MBAP_HEADER_SIZE,
    MODBUS_PROTOCOL_ID,
    MODBUS_TCP_PORT,
    REQUEST_TIMEOUT,
    ExceptionCode,
    FunctionCode,
)
from .errors import (
    ConnectionClosedError,
    ConnectionEstablishmentError,
    IdleTimeoutError,
    IllegalFunctionError,
    InvalidMessageIDError,
    ModbusError,
    ModbusIOError,
    ModbusProtocolException,
    ModbusTimeoutError,
    ProtocolError,
)
from .framing import MBAPHeader, decode_frame, decode_header, encode_frame
from .pdu import ModbusExceptionPDU, ModbusRequest, ModbusResponse
from .server import Server
from .socket_handle import SocketHandle

__version__ = "0.1.0"

__all__ = [
    # Connections
    "Connection",
    "Server",
    "SocketHandle",
    # Framing
    "MBAPHeader",
    "encode_frame",
    "decode_frame",
    "decode_header",
    # PDUs
    "ModbusRequest",
    "ModbusResponse",
    "ModbusExceptionPDU",
    "FunctionCode",
    "ExceptionCode",
    # Errors
    "ModbusError",
    "ConnectionEstablishmentError",
    "ConnectionClosedError",
    "IdleTimeoutError",
    "ModbusTimeoutError",
    "ProtocolError",
    "IllegalFunctionError",
    "InvalidMessageIDError",
    "ModbusProtocolException",
    "ModbusIOError",
    # Constants
    "MODBUS_TCP_PORT",
    "MBAP_HEADER_SIZE",
    "MODBUS_PROTOCOL_ID",
    "DEFAULT_RESPONSE_TIMEOUT",
    "REQUEST_TIMEOUT",
]
