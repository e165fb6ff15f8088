"""
MBAP (Modbus Application Protocol) framing.

Every Modbus/TCP message is wrapped in a 6-byte header followed by the
opaque PDU payload:

Offset  Size  Byte Order  Field           Description
------  ----  ----------  -----           -----------
0       2     Big-endian  transaction_id  Chosen by the requester, echoed by the responder
2       2     Big-endian  protocol_id     Always 0 for Modbus
4       2     Big-endian  length          Byte count of the payload
6+      var   -           payload         PDU bytes (unit id first)

The codec is pure; it performs no I/O.
"""

import struct
from dataclasses import dataclass

from .constants import MAX_PAYLOAD_SIZE, MAX_TRANSACTION_ID, MBAP_HEADER_SIZE, MODBUS_PROTOCOL_ID
from .errors import ProtocolError

_HEADER = struct.Struct(">HHH")


@dataclass(frozen=True)
class MBAPHeader:
    """Decoded MBAP header."""

    transaction_id: int
    protocol_id: int
    length: int

    def pack(self) -> bytes:
        return _HEADER.pack(self.transaction_id, self.protocol_id, self.length)


def encode_frame(transaction_id: int, pdu: bytes) -> bytes:
    """
    Wrap a PDU in an MBAP header.

    Args:
        transaction_id: 16-bit transaction id
        pdu: Payload bytes

    Returns:
        Header followed by the payload

    Raises:
        ValueError: If the transaction id or payload size do not fit in 16 bits
    """
    if not 0 <= transaction_id <= MAX_TRANSACTION_ID:
        raise ValueError(f"transaction_id must be between 0 and {MAX_TRANSACTION_ID}, got {transaction_id}")
    if len(pdu) > MAX_PAYLOAD_SIZE:
        raise ValueError(f"payload too large: {len(pdu)} > {MAX_PAYLOAD_SIZE}")

    return _HEADER.pack(transaction_id, MODBUS_PROTOCOL_ID, len(pdu)) + bytes(pdu)


def decode_header(data: bytes) -> MBAPHeader:
    """
    Parse and validate the MBAP header at the start of ``data``.

    Raises:
        ProtocolError: If fewer than 6 bytes are given or the protocol id is not 0
    """
    if len(data) < MBAP_HEADER_SIZE:
        raise ProtocolError(f"MBAP header too short: {len(data)} < {MBAP_HEADER_SIZE}")

    transaction_id, protocol_id, length = _HEADER.unpack_from(data, 0)
    if protocol_id != MODBUS_PROTOCOL_ID:
        raise ProtocolError(f"invalid protocol id {protocol_id:#06x}")

    return MBAPHeader(transaction_id, protocol_id, length)


def decode_frame(frame: bytes) -> tuple[int, bytes]:
    """
    Split a complete frame into transaction id and payload.

    Raises:
        ProtocolError: If the header is invalid or the declared length does not
            match the bytes that follow it
    """
    header = decode_header(frame)
    payload = bytes(frame[MBAP_HEADER_SIZE:])
    if len(payload) != header.length:
        raise ProtocolError(f"length mismatch: header declares {header.length} bytes, frame carries {len(payload)}")
    return header.transaction_id, payload
