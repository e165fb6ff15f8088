"""
Modbus/TCP protocol constants.

These constants define the MBAP framing parameters, the default timeouts
and the Modbus function and exception codes.

Timeout defaults can be overridden with environment variables read at
import time:
- MBTCP_RESPONSE_TIMEOUT: response wait in milliseconds
- MBTCP_REQUEST_TIMEOUT: request/liveness wait in milliseconds
- MBTCP_CONNECT_TIMEOUT: TCP connect timeout in seconds
"""

import os
from enum import IntEnum
from typing import Optional


def _get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Get environment variable as int."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {val!r}")


def _get_env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    """Get environment variable as float."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {val!r}")


# Network ports
MODBUS_TCP_PORT = 502

# MBAP header
MBAP_HEADER_SIZE = 6  # transaction id, protocol id, length
MODBUS_PROTOCOL_ID = 0
MAX_TRANSACTION_ID = 0xFFFF
MAX_PAYLOAD_SIZE = 0xFFFF  # length field is 16 bits

# Exception responses set the high bit of the function code
EXCEPTION_FLAG = 0x80

# Timeouts
DEFAULT_RESPONSE_TIMEOUT = _get_env_int("MBTCP_RESPONSE_TIMEOUT", 500)  # ms
REQUEST_TIMEOUT = _get_env_int("MBTCP_REQUEST_TIMEOUT", 60 * 1000)  # ms, peer considered dead after this
DEFAULT_CONNECT_TIMEOUT = _get_env_float("MBTCP_CONNECT_TIMEOUT", 5.0)  # seconds

# Buffer sizes
RECV_CHUNK_SIZE = 1024
DEFAULT_BACKLOG = 5


class FunctionCode(IntEnum):
    """Modbus function codes supported by the PDU codec."""

    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_COILS = 0x0F
    WRITE_MULTIPLE_REGISTERS = 0x10


class ExceptionCode(IntEnum):
    """Modbus exception codes carried by exception responses."""

    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SLAVE_DEVICE_BUSY = 0x06
    NEGATIVE_ACKNOWLEDGE = 0x07
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_UNAVAILABLE = 0x0A
    GATEWAY_TARGET_DEVICE_FAILED_TO_RESPOND = 0x0B


READ_BIT_FUNCTIONS = (FunctionCode.READ_COILS, FunctionCode.READ_DISCRETE_INPUTS)
READ_REGISTER_FUNCTIONS = (FunctionCode.READ_HOLDING_REGISTERS, FunctionCode.READ_INPUT_REGISTERS)

# Coil values for WRITE_SINGLE_COIL
COIL_ON = 0xFF00
COIL_OFF = 0x0000
