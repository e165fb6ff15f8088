"""
Exclusively owned TCP socket.

A SocketHandle is either Open (it owns one connected stream socket) or
Closed (it owns nothing). Ownership moves with take()/assign(); the
source of a move is left Closed, so closing or collecting it afterwards
does nothing. Handles cannot be copied.

This module is also the only place that touches the socket API, so any
platform differences stay here.
"""

import errno
import logging
import select
import socket
from typing import Optional

from .constants import DEFAULT_CONNECT_TIMEOUT
from .errors import ConnectionClosedError, ConnectionEstablishmentError

logger = logging.getLogger(__name__)


def parse_ipv4(address: str) -> str:
    """Validate a numeric IPv4 literal (no name resolution)."""
    if not address:
        raise ValueError("address cannot be empty")
    try:
        socket.inet_pton(socket.AF_INET, address)
    except (OSError, ValueError):
        raise ValueError(f"address must be a numeric IPv4 literal, got {address!r}")
    return address


def validate_port(port: int) -> int:
    if port <= 0 or port > 65535:
        raise ValueError(f"port must be between 1 and 65535, got {port}")
    return port


class SocketHandle:
    """
    Move-only owner of one connected stream socket.

    Example:
        handle = SocketHandle.connect("192.168.0.10", 502)
        other = handle.take()     # handle is now closed, other owns the socket
        other.close()
    """

    _sock: Optional[socket.socket] = None

    def __init__(self, sock: Optional[socket.socket] = None):
        """
        Adopt an already connected socket.

        Args:
            sock: Connected stream socket, or None for a closed handle
        """
        self._sock = sock

    @classmethod
    def connect(
        cls,
        address: str,
        port: int,
        connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
    ) -> "SocketHandle":
        """
        Open a TCP connection to a numeric IPv4 address.

        Args:
            address: IPv4 literal, e.g. "127.0.0.1"
            port: Remote port
            connect_timeout: Seconds to wait for the TCP handshake (None = OS default)

        Raises:
            ValueError: If address is not an IPv4 literal or port is out of range
            ConnectionEstablishmentError: If the socket cannot be created or connected
        """
        parse_ipv4(address)
        validate_port(port)

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            logger.error(f"Cannot open socket: {e}")
            raise ConnectionEstablishmentError(e.errno, "cannot open socket") from e

        try:
            sock.settimeout(connect_timeout)
            sock.connect((address, port))
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            # Blocking from here on; reads are bounded by wait_readable()
            sock.settimeout(None)
        except OSError as e:
            sock.close()
            code = errno.ETIMEDOUT if isinstance(e, TimeoutError) and e.errno is None else e.errno
            logger.error(f"Cannot connect to {address}:{port}: {e}")
            raise ConnectionEstablishmentError(code, f"cannot connect to {address}:{port}") from e

        logger.debug(f"Opened TCP socket to {address}:{port}")
        return cls(sock)

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def fileno(self) -> int:
        """OS descriptor of the owned socket, or -1 when closed."""
        if self._sock is None:
            return -1
        return self._sock.fileno()

    def close(self) -> None:
        """Close the owned socket. Safe to call multiple times."""
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.close()
            except OSError as e:
                logger.warning(f"Error closing socket: {e}")

    def take(self) -> "SocketHandle":
        """Move ownership into a new handle, leaving this one closed."""
        moved = SocketHandle(self._sock)
        self._sock = None
        return moved

    def assign(self, other: "SocketHandle") -> None:
        """Move-assign: drop the currently owned socket and take other's."""
        if other is self:
            return
        if self._sock is not None and self._sock is not other._sock:
            self.close()
        self._sock = other._sock
        other._sock = None

    def send_all(self, data: bytes) -> None:
        self._require_open().sendall(data)

    def recv(self, max_bytes: int) -> bytes:
        return self._require_open().recv(max_bytes)

    def wait_readable(self, timeout_ms: Optional[float]) -> bool:
        """
        Block until the socket is readable or the timeout expires.

        Args:
            timeout_ms: Milliseconds to wait (None = forever)

        Returns:
            True if data (or EOF) is ready to be read, False on timeout
        """
        sock = self._require_open()
        timeout = None if timeout_ms is None else max(timeout_ms, 0) / 1000.0
        ready, _, _ = select.select([sock], [], [], timeout)
        return bool(ready)

    def _require_open(self) -> socket.socket:
        if self._sock is None:
            raise ConnectionClosedError("socket handle is closed")
        return self._sock

    def __copy__(self):
        raise TypeError("SocketHandle cannot be copied, use take() to move ownership")

    def __deepcopy__(self, memo):
        raise TypeError("SocketHandle cannot be copied, use take() to move ownership")

    def __del__(self):
        self.close()

    def __repr__(self) -> str:
        if self._sock is None:
            return "SocketHandle(closed)"
        return f"SocketHandle(fd={self.fileno()})"
