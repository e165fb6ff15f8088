"""
Modbus PDU encoding and decoding.

Payloads handed to the MBAP framing layer start with the unit identifier
followed by the function code and the function-specific data:

Function                      Request data                      Response data
--------                      ------------                      -------------
READ_COILS (0x01)             address, quantity                 byte count, packed bits
READ_DISCRETE_INPUTS (0x02)   address, quantity                 byte count, packed bits
READ_HOLDING_REGISTERS (0x03) address, quantity                 byte count, registers
READ_INPUT_REGISTERS (0x04)   address, quantity                 byte count, registers
WRITE_SINGLE_COIL (0x05)      address, 0xFF00/0x0000            echo of request
WRITE_SINGLE_REGISTER (0x06)  address, value                    echo of request
WRITE_MULTIPLE_COILS (0x0F)   address, quantity, count, bits    address, quantity
WRITE_MULTIPLE_REGISTERS 0x10 address, quantity, count, regs    address, quantity

Addresses, quantities and registers are big-endian uint16; bits are
packed LSB-first. An exception response carries the function code with
the high bit set followed by a one-byte exception code.

Any object with ``to_bytes()`` / ``from_bytes()`` can stand in for these
classes when constructing a Connection.
"""

import struct
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from .constants import (
    COIL_OFF,
    COIL_ON,
    EXCEPTION_FLAG,
    READ_BIT_FUNCTIONS,
    READ_REGISTER_FUNCTIONS,
    ExceptionCode,
    FunctionCode,
)
from .errors import IllegalFunctionError, ProtocolError


def pack_bits(bits: Iterable[int]) -> bytes:
    """Pack booleans LSB-first into bytes."""
    out = bytearray()
    for i, bit in enumerate(bits):
        if i % 8 == 0:
            out.append(0)
        if bit:
            out[-1] |= 1 << (i % 8)
    return bytes(out)


def unpack_bits(data: bytes, count: int) -> list[int]:
    """Unpack ``count`` LSB-first bits from bytes."""
    return [(data[i // 8] >> (i % 8)) & 1 for i in range(count)]


def _pack_registers(values: Iterable[int]) -> bytes:
    try:
        return b"".join(struct.pack(">H", v) for v in values)
    except struct.error:
        raise ValueError(f"register values must be between 0 and 65535, got {list(values)}")


def _pack(fmt: str, *fields: int) -> bytes:
    try:
        return struct.pack(fmt, *fields)
    except struct.error as e:
        raise ValueError(f"PDU field out of range: {e}") from e


def _unpack_registers(data: bytes) -> list[int]:
    return [v for (v,) in struct.iter_unpack(">H", data)]


def _function_code(value: int) -> FunctionCode:
    try:
        return FunctionCode(value)
    except ValueError:
        raise IllegalFunctionError(value)


def _split(data: bytes, kind: str) -> tuple[int, FunctionCode, bytes]:
    if len(data) < 2:
        raise ProtocolError(f"{kind} PDU too short: {len(data)} bytes")
    return data[0], _function_code(data[1]), bytes(data[2:])


def _expect_length(body: bytes, size: int, kind: str, function_code: FunctionCode) -> None:
    if len(body) != size:
        raise ProtocolError(f"{kind} {function_code.name} expects {size} data bytes, got {len(body)}")


@dataclass
class ModbusRequest:
    """
    A Modbus request PDU.

    Example:
        req = ModbusRequest(unit_id=1, function_code=FunctionCode.READ_HOLDING_REGISTERS,
                            address=0x10, count=2)
        req.to_bytes()  # b"\\x01\\x03\\x00\\x10\\x00\\x02"
    """

    unit_id: int
    function_code: FunctionCode
    address: int
    count: int = 0
    values: list[int] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        fc = _function_code(self.function_code)
        head = _pack(">BBH", self.unit_id, fc, self.address)

        if fc in READ_BIT_FUNCTIONS or fc in READ_REGISTER_FUNCTIONS:
            return head + _pack(">H", self.count)

        if fc in (FunctionCode.WRITE_SINGLE_COIL, FunctionCode.WRITE_SINGLE_REGISTER):
            if not self.values:
                raise ValueError(f"{fc.name} needs one value")
            if fc == FunctionCode.WRITE_SINGLE_COIL:
                return head + _pack(">H", COIL_ON if self.values[0] else COIL_OFF)
            return head + _pack_registers(self.values[:1])

        if fc == FunctionCode.WRITE_MULTIPLE_COILS:
            data = pack_bits(self.values)
        else:
            data = _pack_registers(self.values)
        return head + _pack(">HB", len(self.values), len(data)) + data

    @classmethod
    def from_bytes(cls, data: bytes) -> "ModbusRequest":
        unit_id, fc, body = _split(data, "request")

        if fc in READ_BIT_FUNCTIONS or fc in READ_REGISTER_FUNCTIONS:
            _expect_length(body, 4, "request", fc)
            address, count = struct.unpack(">HH", body)
            return cls(unit_id, fc, address, count)

        if fc == FunctionCode.WRITE_SINGLE_COIL:
            _expect_length(body, 4, "request", fc)
            address, raw = struct.unpack(">HH", body)
            if raw not in (COIL_ON, COIL_OFF):
                raise ProtocolError(f"invalid coil value {raw:#06x}")
            return cls(unit_id, fc, address, 1, [1 if raw == COIL_ON else 0])

        if fc == FunctionCode.WRITE_SINGLE_REGISTER:
            _expect_length(body, 4, "request", fc)
            address, value = struct.unpack(">HH", body)
            return cls(unit_id, fc, address, 1, [value])

        # WRITE_MULTIPLE_COILS / WRITE_MULTIPLE_REGISTERS
        if len(body) < 5:
            raise ProtocolError(f"request {fc.name} too short: {len(body)} data bytes")
        address, count, byte_count = struct.unpack_from(">HHB", body)
        payload = body[5:]
        expected = (count + 7) // 8 if fc == FunctionCode.WRITE_MULTIPLE_COILS else count * 2
        if byte_count != expected or len(payload) != byte_count:
            raise ProtocolError(
                f"request {fc.name} byte count mismatch: quantity {count}, "
                f"declared {byte_count}, carried {len(payload)}"
            )
        if fc == FunctionCode.WRITE_MULTIPLE_COILS:
            return cls(unit_id, fc, address, count, unpack_bits(payload, count))
        return cls(unit_id, fc, address, count, _unpack_registers(payload))


@dataclass
class ModbusResponse:
    """
    A Modbus (non-exception) response PDU.

    For read functions ``values`` holds the returned bits or registers and
    ``address`` is not transmitted. Bit reads decode whole bytes, so
    ``values`` is padded to a multiple of 8.
    """

    unit_id: int
    function_code: FunctionCode
    address: int = 0
    count: int = 0
    values: list[int] = field(default_factory=list)

    @classmethod
    def for_request(cls, request: ModbusRequest, values: Optional[list[int]] = None) -> "ModbusResponse":
        """Build the response that answers ``request``."""
        fc = request.function_code
        if fc in READ_BIT_FUNCTIONS or fc in READ_REGISTER_FUNCTIONS:
            values = list(values or [])
            return cls(request.unit_id, fc, request.address, len(values), values)
        return cls(request.unit_id, fc, request.address, request.count, list(request.values))

    def to_bytes(self) -> bytes:
        fc = _function_code(self.function_code)
        head = _pack(">BB", self.unit_id, fc)

        if fc in READ_BIT_FUNCTIONS or fc in READ_REGISTER_FUNCTIONS:
            data = pack_bits(self.values) if fc in READ_BIT_FUNCTIONS else _pack_registers(self.values)
            return head + _pack(">B", len(data)) + data

        if fc == FunctionCode.WRITE_SINGLE_COIL:
            value = self.values[0] if self.values else 0
            return head + _pack(">HH", self.address, COIL_ON if value else COIL_OFF)
        if fc == FunctionCode.WRITE_SINGLE_REGISTER:
            value = self.values[0] if self.values else 0
            return head + _pack(">H", self.address) + _pack_registers([value])
        return head + _pack(">HH", self.address, self.count)

    @classmethod
    def from_bytes(cls, data: bytes) -> "ModbusResponse":
        unit_id, fc, body = _split(data, "response")

        if fc in READ_BIT_FUNCTIONS or fc in READ_REGISTER_FUNCTIONS:
            if not body:
                raise ProtocolError(f"response {fc.name} missing byte count")
            byte_count, payload = body[0], body[1:]
            if len(payload) != byte_count:
                raise ProtocolError(f"response {fc.name} declares {byte_count} bytes, carries {len(payload)}")
            if fc in READ_BIT_FUNCTIONS:
                values = unpack_bits(payload, byte_count * 8)
            else:
                if byte_count % 2:
                    raise ProtocolError(f"response {fc.name} has odd byte count {byte_count}")
                values = _unpack_registers(payload)
            return cls(unit_id, fc, 0, len(values), values)

        _expect_length(body, 4, "response", fc)
        address, value = struct.unpack(">HH", body)
        if fc == FunctionCode.WRITE_SINGLE_COIL:
            if value not in (COIL_ON, COIL_OFF):
                raise ProtocolError(f"invalid coil value {value:#06x}")
            return cls(unit_id, fc, address, 1, [1 if value == COIL_ON else 0])
        if fc == FunctionCode.WRITE_SINGLE_REGISTER:
            return cls(unit_id, fc, address, 1, [value])
        return cls(unit_id, fc, address, value)


@dataclass
class ModbusExceptionPDU:
    """A Modbus exception response: unit id, function code | 0x80, exception code."""

    unit_id: int
    function_code: int
    exception_code: Union[ExceptionCode, int]

    @classmethod
    def for_request(cls, request: ModbusRequest, exception_code: ExceptionCode) -> "ModbusExceptionPDU":
        return cls(request.unit_id, int(request.function_code), exception_code)

    @staticmethod
    def is_present_in(data: bytes) -> bool:
        """True if ``data`` encodes an exception response rather than a normal one."""
        return len(data) >= 2 and bool(data[1] & EXCEPTION_FLAG)

    def to_bytes(self) -> bytes:
        return _pack(">BBB", self.unit_id, (self.function_code & 0x7F) | EXCEPTION_FLAG, self.exception_code)

    @classmethod
    def from_bytes(cls, data: bytes) -> "ModbusExceptionPDU":
        if len(data) != 3:
            raise ProtocolError(f"exception PDU must be 3 bytes, got {len(data)}")
        if not data[1] & EXCEPTION_FLAG:
            raise ProtocolError(f"function code {data[1]:#04x} does not carry the exception flag")
        code = data[2]
        try:
            code = ExceptionCode(code)
        except ValueError:
            pass  # keep codes outside the standard table as plain ints
        return cls(data[0], data[1] & 0x7F, code)
