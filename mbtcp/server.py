"""
Modbus/TCP listener.

Accepts peer connections and hands each one out as a Connection in the
server role:

    with Server(5020, "127.0.0.1") as server:
        conn = server.accept()
        request = conn.await_request()
        conn.send_response(ModbusResponse.for_request(request, [0, 0]))
"""

import logging
import select
import socket
from typing import Optional

from .connection import Connection, _validate_timeout
from .constants import DEFAULT_BACKLOG, DEFAULT_RESPONSE_TIMEOUT, REQUEST_TIMEOUT
from .errors import ConnectionEstablishmentError, ModbusTimeoutError
from .socket_handle import parse_ipv4

logger = logging.getLogger(__name__)


class Server:
    """
    TCP listener producing server-role Connections.

    Attributes:
        address: Bound IPv4 address
        port: Bound port (resolved after listen() when 0 was requested)
        listening: True between listen() and close()
    """

    def __init__(
        self,
        port: int,
        address: str = "0.0.0.0",
        backlog: int = DEFAULT_BACKLOG,
        response_timeout: int = DEFAULT_RESPONSE_TIMEOUT,
        request_timeout: int = REQUEST_TIMEOUT,
    ):
        """
        Args:
            port: Port to listen on (0 picks a free port)
            address: IPv4 literal to bind
            backlog: Pending connection queue size
            response_timeout: Passed to every accepted Connection
            request_timeout: Passed to every accepted Connection

        Note:
            Nothing is bound until listen() is called or the context
            manager is entered.
        """
        parse_ipv4(address)
        if port < 0 or port > 65535:
            raise ValueError(f"port must be between 0 and 65535, got {port}")
        if backlog <= 0:
            raise ValueError(f"backlog must be positive, got {backlog}")

        self._address = address
        self._port = port
        self._backlog = backlog
        self._response_timeout = _validate_timeout("response_timeout", response_timeout)
        self._request_timeout = _validate_timeout("request_timeout", request_timeout)
        self._socket: Optional[socket.socket] = None

    @property
    def address(self) -> str:
        return self._address

    @property
    def port(self) -> int:
        return self._port

    @property
    def listening(self) -> bool:
        return self._socket is not None

    def listen(self) -> None:
        """
        Bind and start listening.

        Raises:
            ConnectionEstablishmentError: If the socket cannot be created or bound
        """
        if self._socket is not None:
            return

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise ConnectionEstablishmentError(e.errno, "cannot open socket") from e

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._address, self._port))
            sock.listen(self._backlog)
        except OSError as e:
            sock.close()
            logger.error(f"Cannot listen on {self._address}:{self._port}: {e}")
            raise ConnectionEstablishmentError(e.errno, f"cannot listen on {self._address}:{self._port}") from e

        self._socket = sock
        self._port = sock.getsockname()[1]
        logger.info(f"Listening for Modbus/TCP connections on {self._address}:{self._port}")

    def accept(self, timeout_ms: Optional[int] = None) -> Connection:
        """
        Wait for a peer and adopt its socket.

        Args:
            timeout_ms: Milliseconds to wait (None = forever)

        Returns:
            Connection owning the accepted socket

        Raises:
            ModbusTimeoutError: If no peer connects within timeout_ms
            ConnectionEstablishmentError: If accept fails
        """
        if self._socket is None:
            self.listen()
        assert self._socket is not None

        timeout = None if timeout_ms is None else timeout_ms / 1000.0
        ready, _, _ = select.select([self._socket], [], [], timeout)
        if not ready:
            raise ModbusTimeoutError(timeout_ms)

        try:
            sock, peer = self._socket.accept()
        except OSError as e:
            raise ConnectionEstablishmentError(e.errno, "accept failed") from e

        sock.setblocking(True)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        logger.info(f"Accepted Modbus/TCP peer {peer[0]}:{peer[1]}")
        return Connection(sock, response_timeout=self._response_timeout, request_timeout=self._request_timeout)

    def close(self) -> None:
        """Stop listening. Safe to call multiple times; accepted Connections stay open."""
        sock, self._socket = self._socket, None
        if sock is not None:
            sock.close()
            logger.info(f"Stopped listening on {self._address}:{self._port}")

    def __enter__(self) -> "Server":
        self.listen()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def __repr__(self) -> str:
        status = "listening" if self.listening else "idle"
        return f"Server({self._address}:{self._port}, {status})"
