"""
Modbus/TCP connection.

A Connection owns one TCP socket and exchanges MBAP-framed PDUs over it,
in either role:

Client:
    with Connection.connect("192.168.0.10", 502) as conn:
        conn.send_request(ModbusRequest(1, FunctionCode.READ_HOLDING_REGISTERS, 0, 4))
        response = conn.await_response()

Server (socket accepted elsewhere, see mbtcp.server):
    conn = Connection(accepted_socket)
    request = conn.await_request()
    conn.send_response(ModbusResponse.for_request(request, [1, 2, 3, 4]))

Exchanges are half-duplex: one transaction id is tracked at a time, so a
request must be answered (or fail) before the next one is sent. Each
receive reads the 6-byte header, then exactly the declared payload
length, looping over partial reads under a single deadline.

A Connection is not thread-safe. Use one per thread or peer, or guard it
with an external lock.
"""

import logging
import socket
import time
from typing import Any, Optional, Union

from .constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_RESPONSE_TIMEOUT,
    MAX_TRANSACTION_ID,
    MBAP_HEADER_SIZE,
    RECV_CHUNK_SIZE,
    REQUEST_TIMEOUT,
)
from .errors import (
    ConnectionClosedError,
    IdleTimeoutError,
    InvalidMessageIDError,
    ModbusIOError,
    ModbusProtocolException,
    ModbusTimeoutError,
    ProtocolError,
)
from .framing import decode_frame, decode_header, encode_frame
from .pdu import ModbusExceptionPDU, ModbusRequest, ModbusResponse
from .socket_handle import SocketHandle

logger = logging.getLogger(__name__)


def _payload_bytes(pdu: Any) -> bytes:
    if isinstance(pdu, (bytes, bytearray, memoryview)):
        return bytes(pdu)
    if hasattr(pdu, "to_bytes") and not isinstance(pdu, int):
        return bytes(pdu.to_bytes())
    raise TypeError(f"pdu must have to_bytes() or be bytes, got {type(pdu).__name__}")


def _validate_transaction_id(value: int) -> int:
    if not 0 <= value <= MAX_TRANSACTION_ID:
        raise ValueError(f"transaction id must be between 0 and {MAX_TRANSACTION_ID}, got {value}")
    return value


def _validate_timeout(name: str, value: int) -> int:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


class Connection:
    """
    MBAP-framed request/response exchange over one owned socket.

    Attributes:
        transaction_id: Id of the last request sent (client) or received
            (server); responses echo it and await_response() checks it
        next_transaction_id: Id the next send_request() will use
        response_timeout: Milliseconds await_response() waits for a reply
        request_timeout: Milliseconds await_request()/await_raw_message() wait
    """

    def __init__(
        self,
        handle: Union[SocketHandle, socket.socket, None] = None,
        *,
        response_timeout: int = DEFAULT_RESPONSE_TIMEOUT,
        request_timeout: int = REQUEST_TIMEOUT,
        request_type: Any = ModbusRequest,
        response_type: Any = ModbusResponse,
        exception_type: Any = ModbusExceptionPDU,
    ):
        """
        Adopt a connected socket.

        Args:
            handle: SocketHandle to take ownership from (it is left closed),
                a connected socket to adopt, or None for a closed connection
            response_timeout: Response wait in milliseconds
            request_timeout: Request/raw-message wait in milliseconds
            request_type: Class decoding request payloads (``from_bytes``)
            response_type: Class decoding response payloads (``from_bytes``)
            exception_type: Class detecting and decoding exception payloads
                (``is_present_in``, ``from_bytes``)
        """
        # Validate before taking ownership; a rejected handle stays with the caller
        self._response_timeout = _validate_timeout("response_timeout", response_timeout)
        self._request_timeout = _validate_timeout("request_timeout", request_timeout)

        if isinstance(handle, SocketHandle):
            self._handle = handle.take()
        else:
            self._handle = SocketHandle(handle)

        self._request_type = request_type
        self._response_type = response_type
        self._exception_type = exception_type

        self._transaction_id = 0
        self._next_transaction_id = 0

    @classmethod
    def connect(
        cls,
        address: str,
        port: int,
        *,
        connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
        **kwargs,
    ) -> "Connection":
        """
        Connect to a Modbus/TCP server (client role).

        Args:
            address: Numeric IPv4 address
            port: Server port (usually 502)
            connect_timeout: Seconds to wait for the TCP handshake
            **kwargs: Passed to the Connection constructor

        Raises:
            ValueError: If address is not an IPv4 literal, port is out of range
                or a timeout is not positive
            ConnectionEstablishmentError: If the socket cannot be created or connected
        """
        for name in ("response_timeout", "request_timeout"):
            if name in kwargs:
                _validate_timeout(name, kwargs[name])

        handle = SocketHandle.connect(address, port, connect_timeout)
        try:
            conn = cls(handle, **kwargs)
        except Exception:
            handle.close()
            raise
        logger.info(f"Connected to Modbus/TCP server at {address}:{port}")
        return conn

    # ─────────────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return not self._handle.is_open

    @property
    def fileno(self) -> int:
        """OS descriptor of the owned socket, or -1 when closed."""
        return self._handle.fileno()

    @property
    def transaction_id(self) -> int:
        return self._transaction_id

    @transaction_id.setter
    def transaction_id(self, value: int) -> None:
        self._transaction_id = _validate_transaction_id(value)

    @property
    def next_transaction_id(self) -> int:
        return self._next_transaction_id

    @next_transaction_id.setter
    def next_transaction_id(self, value: int) -> None:
        self._next_transaction_id = _validate_transaction_id(value)

    @property
    def response_timeout(self) -> int:
        return self._response_timeout

    @response_timeout.setter
    def response_timeout(self, value: int) -> None:
        self._response_timeout = _validate_timeout("response_timeout", value)

    @property
    def request_timeout(self) -> int:
        return self._request_timeout

    def close(self) -> None:
        """Close the socket. Safe to call multiple times."""
        if self._handle.is_open:
            self._handle.close()
            logger.info("Closed Modbus/TCP connection")

    def take(self) -> "Connection":
        """Move the socket and transaction state into a new Connection, leaving this one closed."""
        moved = Connection(
            self._handle,
            response_timeout=self._response_timeout,
            request_timeout=self._request_timeout,
            request_type=self._request_type,
            response_type=self._response_type,
            exception_type=self._exception_type,
        )
        moved._transaction_id = self._transaction_id
        moved._next_transaction_id = self._next_transaction_id
        return moved

    # ─────────────────────────────────────────────────────────────────────
    # Sending
    # ─────────────────────────────────────────────────────────────────────

    def send_request(self, pdu: Any) -> bytes:
        """
        Frame a request with the next transaction id and send it.

        Args:
            pdu: Object with ``to_bytes()`` or raw payload bytes

        Returns:
            The complete frame written to the socket

        Raises:
            ValueError: If the pdu cannot be encoded (no id is consumed)
            ModbusIOError: If the write fails
            ConnectionClosedError: If the connection is closed
        """
        transaction_id = self._next_transaction_id
        frame = encode_frame(transaction_id, _payload_bytes(pdu))
        self._next_transaction_id = (transaction_id + 1) & MAX_TRANSACTION_ID
        self._write_frame(transaction_id, frame)
        self._transaction_id = transaction_id
        return frame

    def send_response(self, pdu: Any) -> bytes:
        """Frame a response with the stored transaction id and send it."""
        return self._send_frame(self._transaction_id, pdu)

    def send_exception(self, exception_pdu: Any) -> bytes:
        """Frame an exception response with the stored transaction id and send it."""
        return self._send_frame(self._transaction_id, exception_pdu)

    def _send_frame(self, transaction_id: int, pdu: Any) -> bytes:
        frame = encode_frame(transaction_id, _payload_bytes(pdu))
        self._write_frame(transaction_id, frame)
        return frame

    def _write_frame(self, transaction_id: int, frame: bytes) -> None:
        try:
            self._handle.send_all(frame)
        except OSError as e:
            logger.error(f"Failed to send frame {transaction_id}: {e}")
            raise ModbusIOError(f"send failed: {e}") from e
        logger.debug(f"Sent frame {transaction_id}: {len(frame) - MBAP_HEADER_SIZE} payload bytes")

    # ─────────────────────────────────────────────────────────────────────
    # Receiving
    # ─────────────────────────────────────────────────────────────────────

    def await_raw_message(self) -> bytes:
        """
        Receive one complete frame (header and payload) without decoding it.

        Raises:
            IdleTimeoutError: If nothing arrives within the request timeout;
                this is a ConnectionClosedError (peer presumed dead)
            ConnectionClosedError: If the peer closed the stream
            ProtocolError: If the read fails or the header is invalid
        """
        return self._recv_frame(self._request_timeout, IdleTimeoutError)

    def await_request(self) -> Any:
        """
        Receive a request and remember its transaction id for the reply.

        Raises:
            ModbusTimeoutError: If no request arrives within the request timeout
            ConnectionClosedError: If the peer closed the stream
            ProtocolError: If the read fails or the frame/PDU is malformed
        """
        frame = self._recv_frame(self._request_timeout, ModbusTimeoutError)
        transaction_id, payload = decode_frame(frame)
        self._transaction_id = transaction_id
        return self._request_type.from_bytes(payload)

    def await_response(self) -> Any:
        """
        Receive the response to the last request sent.

        Raises:
            ModbusTimeoutError: If no response arrives within response_timeout
            ConnectionClosedError: If the peer closed the stream
            ProtocolError: If the read fails or the frame/PDU is malformed
            InvalidMessageIDError: If the response carries another transaction id
            ModbusProtocolException: If the peer answered with an exception response
        """
        frame = self._recv_frame(self._response_timeout, ModbusTimeoutError)
        transaction_id, payload = decode_frame(frame)

        if transaction_id != self._transaction_id:
            logger.warning(f"Response transaction id {transaction_id} does not match request {self._transaction_id}")
            raise InvalidMessageIDError(self._transaction_id, transaction_id)

        if self._exception_type.is_present_in(payload):
            exception_pdu = self._exception_type.from_bytes(payload)
            logger.debug(f"Frame {transaction_id} is an exception response: {exception_pdu}")
            raise ModbusProtocolException(exception_pdu)

        return self._response_type.from_bytes(payload)

    def _recv_frame(self, timeout_ms: int, timeout_error: type[ModbusTimeoutError]) -> bytes:
        """Read one header plus its declared payload before a single deadline."""
        deadline = time.monotonic() + timeout_ms / 1000.0

        header_bytes = self._recv_exact(MBAP_HEADER_SIZE, deadline, timeout_ms, timeout_error)
        try:
            header = decode_header(header_bytes)
        except ProtocolError as e:
            logger.warning(f"Rejected frame header {header_bytes.hex()}: {e}")
            raise

        payload = self._recv_exact(header.length, deadline, timeout_ms, timeout_error)
        logger.debug(f"Received frame {header.transaction_id}: {header.length} payload bytes")
        return header_bytes + payload

    def _recv_exact(
        self,
        n: int,
        deadline: float,
        timeout_ms: int,
        timeout_error: type[ModbusTimeoutError],
    ) -> bytes:
        """
        Receive exactly n bytes, looping over partial reads.

        Raises:
            timeout_error: If the deadline passes before n bytes arrived
            ConnectionClosedError: If the peer closed the stream
            ProtocolError: If waiting or reading fails
        """
        data = bytearray()
        while len(data) < n:
            remaining_ms = (deadline - time.monotonic()) * 1000.0
            if remaining_ms <= 0 or not self._wait_readable(remaining_ms):
                raise timeout_error(timeout_ms)

            try:
                chunk = self._handle.recv(min(n - len(data), RECV_CHUNK_SIZE))
            except OSError as e:
                logger.error(f"Receive failed: {e}")
                raise ProtocolError(f"receive failed: {e}") from e

            if not chunk:
                logger.info("Connection closed by peer")
                raise ConnectionClosedError()
            data.extend(chunk)

        return bytes(data)

    def _wait_readable(self, timeout_ms: float) -> bool:
        try:
            return self._handle.wait_readable(timeout_ms)
        except (OSError, ValueError) as e:
            raise ProtocolError(f"wait for data failed: {e}") from e

    # ─────────────────────────────────────────────────────────────────────
    # Ownership
    # ─────────────────────────────────────────────────────────────────────

    def __copy__(self):
        raise TypeError("Connection cannot be copied, use take() to move ownership")

    def __deepcopy__(self, memo):
        raise TypeError("Connection cannot be copied, use take() to move ownership")

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def __repr__(self) -> str:
        status = "closed" if self.closed else f"fd={self.fileno}"
        return f"Connection({status}, transaction_id={self._transaction_id})"
