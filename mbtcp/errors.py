"""
Modbus/TCP transport errors.

Every failure raised by a Connection derives from ModbusError:

    ModbusError
    ├── ConnectionEstablishmentError   socket creation, connect or bind failed
    ├── ConnectionClosedError          peer closed the stream
    │   └── IdleTimeoutError           raw-message liveness window expired
    ├── ModbusTimeoutError             request/response wait expired
    │   └── IdleTimeoutError
    ├── ProtocolError                  read failure or malformed frame/PDU
    │   └── IllegalFunctionError       unsupported function code
    ├── InvalidMessageIDError          response transaction id mismatch
    ├── ModbusProtocolException        peer sent an exception response
    └── ModbusIOError                  write failure

None of these close the connection. Low-level OSErrors are chained via
``__cause__``.
"""

from typing import Any, Optional

from .constants import ExceptionCode


class ModbusError(Exception):
    """Base exception for Modbus/TCP transport failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConnectionEstablishmentError(ModbusError):
    """Exception when a socket cannot be created, connected or bound."""

    def __init__(self, errno: Optional[int], message: str):
        self.errno = errno
        if errno is not None:
            super().__init__(f"{message} (errno={errno})")
        else:
            super().__init__(message)

    def __repr__(self):
        return f"ConnectionEstablishmentError(errno={self.errno})"


class ConnectionClosedError(ModbusError):
    """Exception when the peer closed the stream."""

    def __init__(self, message: str = "connection closed by peer"):
        super().__init__(message)


class ModbusTimeoutError(ModbusError):
    """Exception when no complete frame arrived before the deadline."""

    def __init__(self, timeout_ms: Optional[int] = None):
        self.timeout_ms = timeout_ms
        msg = f"timeout after {timeout_ms}ms" if timeout_ms is not None else "timeout"
        super().__init__(msg)

    def __repr__(self):
        return f"{type(self).__name__}(timeout_ms={self.timeout_ms})"


class IdleTimeoutError(ConnectionClosedError, ModbusTimeoutError):
    """Liveness window expired while waiting for a raw message.

    The peer is presumed dead, so this is a ConnectionClosedError, but it
    is also a ModbusTimeoutError so callers can treat every expired wait
    the same way.
    """

    def __init__(self, timeout_ms: Optional[int] = None):
        ModbusTimeoutError.__init__(self, timeout_ms)
        self.message = f"no data for {timeout_ms}ms, connection presumed dead"
        self.args = (self.message,)


class ProtocolError(ModbusError):
    """Exception for read failures and malformed frames or PDUs."""


class IllegalFunctionError(ProtocolError):
    """Exception when a PDU carries a function code the codec does not support."""

    def __init__(self, function_code: int):
        self.function_code = function_code
        super().__init__(f"unsupported function code {function_code:#04x}")


class InvalidMessageIDError(ModbusError):
    """Exception when a response does not echo the last request's transaction id."""

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"expected transaction id {expected}, got {received}")

    def __repr__(self):
        return f"InvalidMessageIDError(expected={self.expected}, received={self.received})"


class ModbusProtocolException(ModbusError):
    """Exception when the peer answered with a Modbus exception response.

    Attributes:
        pdu: The decoded exception PDU
        exception_code: Exception code signaled by the peer
        function_code: Function code of the rejected request (high bit cleared)
    """

    def __init__(self, pdu: Any):
        self.pdu = pdu
        code = getattr(pdu, "exception_code", None)
        self.exception_code = code
        self.function_code = getattr(pdu, "function_code", None)
        super().__init__(f"peer signaled exception: {describe_exception_code(code)}")

    def __repr__(self):
        return f"ModbusProtocolException(exception_code={self.exception_code!r})"


class ModbusIOError(ModbusError):
    """Exception when writing a frame to the socket fails."""


def describe_exception_code(code: Optional[int]) -> str:
    """Build a human-readable name for a Modbus exception code."""
    if code is None:
        return "unknown"
    try:
        return f"{ExceptionCode(code).name} ({code:#04x})"
    except ValueError:
        return f"exception code {code:#04x}"
