"""Tests for Modbus PDU encoding/decoding."""

import pytest

from mbtcp import (
    ExceptionCode,
    FunctionCode,
    IllegalFunctionError,
    ModbusExceptionPDU,
    ModbusRequest,
    ModbusResponse,
    ProtocolError,
)
from mbtcp.pdu import pack_bits, unpack_bits


class TestBitPacking:
    def test_lsb_first(self):
        assert pack_bits([1, 0, 1, 1, 0, 0, 1, 1, 1, 0]) == b"\xcd\x01"

    def test_unpack(self):
        assert unpack_bits(b"\xcd\x01", 10) == [1, 0, 1, 1, 0, 0, 1, 1, 1, 0]

    def test_empty(self):
        assert pack_bits([]) == b""


class TestModbusRequest:
    @pytest.mark.parametrize(
        "request_,raw",
        [
            (ModbusRequest(1, FunctionCode.READ_COILS, 0x13, 0x13), b"\x01\x01\x00\x13\x00\x13"),
            (ModbusRequest(1, FunctionCode.READ_DISCRETE_INPUTS, 0xC4, 0x16), b"\x01\x02\x00\xc4\x00\x16"),
            (ModbusRequest(1, FunctionCode.READ_HOLDING_REGISTERS, 0x6B, 3), b"\x01\x03\x00\x6b\x00\x03"),
            (ModbusRequest(1, FunctionCode.READ_INPUT_REGISTERS, 0x08, 1), b"\x01\x04\x00\x08\x00\x01"),
            (ModbusRequest(1, FunctionCode.WRITE_SINGLE_COIL, 0xAC, 1, [1]), b"\x01\x05\x00\xac\xff\x00"),
            (ModbusRequest(1, FunctionCode.WRITE_SINGLE_COIL, 0xAC, 1, [0]), b"\x01\x05\x00\xac\x00\x00"),
            (ModbusRequest(1, FunctionCode.WRITE_SINGLE_REGISTER, 0x01, 1, [3]), b"\x01\x06\x00\x01\x00\x03"),
            (
                ModbusRequest(1, FunctionCode.WRITE_MULTIPLE_COILS, 0x13, 10, [1, 0, 1, 1, 0, 0, 1, 1, 1, 0]),
                b"\x01\x0f\x00\x13\x00\x0a\x02\xcd\x01",
            ),
            (
                ModbusRequest(1, FunctionCode.WRITE_MULTIPLE_REGISTERS, 0x01, 2, [0x000A, 0x0102]),
                b"\x01\x10\x00\x01\x00\x02\x04\x00\x0a\x01\x02",
            ),
        ],
    )
    def test_encode_and_decode(self, request_, raw):
        assert request_.to_bytes() == raw
        assert ModbusRequest.from_bytes(raw) == request_

    def test_single_write_needs_value(self):
        with pytest.raises(ValueError, match="needs one value"):
            ModbusRequest(1, FunctionCode.WRITE_SINGLE_REGISTER, 0).to_bytes()

    def test_register_out_of_range(self):
        with pytest.raises(ValueError, match="between 0 and 65535"):
            ModbusRequest(1, FunctionCode.WRITE_MULTIPLE_REGISTERS, 0, 1, [70000]).to_bytes()

    @pytest.mark.parametrize(
        "request_",
        [
            ModbusRequest(300, FunctionCode.READ_COILS, 0, 1),
            ModbusRequest(1, FunctionCode.READ_HOLDING_REGISTERS, 0x10000, 1),
            ModbusRequest(1, FunctionCode.READ_INPUT_REGISTERS, 0, -1),
        ],
    )
    def test_fields_out_of_range(self, request_):
        with pytest.raises(ValueError, match="out of range"):
            request_.to_bytes()

    def test_unknown_function_code(self):
        with pytest.raises(IllegalFunctionError) as exc_info:
            ModbusRequest.from_bytes(b"\x01\x2b\x0e\x01\x00")
        assert exc_info.value.function_code == 0x2B

    @pytest.mark.parametrize(
        "raw,match",
        [
            (b"\x01", "too short"),
            (b"\x01\x03\x00\x00\x00", "expects 4 data bytes"),
            (b"\x01\x05\x00\x01\x12\x34", "invalid coil value"),
            (b"\x01\x10\x00\x01", "too short"),
            (b"\x01\x10\x00\x01\x00\x02\x04\x00\x0a", "byte count mismatch"),
            (b"\x01\x0f\x00\x13\x00\x0a\x01\xcd", "byte count mismatch"),
        ],
    )
    def test_malformed(self, raw, match):
        with pytest.raises(ProtocolError, match=match):
            ModbusRequest.from_bytes(raw)


class TestModbusResponse:
    def test_read_registers(self):
        response = ModbusResponse.from_bytes(b"\x01\x03\x06\x02\x2b\x00\x00\x00\x64")
        assert response.values == [0x022B, 0, 0x64]
        assert response.count == 3
        assert response.to_bytes() == b"\x01\x03\x06\x02\x2b\x00\x00\x00\x64"

    def test_read_coils_padded_to_bytes(self):
        response = ModbusResponse.from_bytes(b"\x01\x01\x01\x05")
        assert response.values == [1, 0, 1, 0, 0, 0, 0, 0]

    def test_write_single_coil_echo(self):
        response = ModbusResponse.from_bytes(b"\x01\x05\x00\xac\xff\x00")
        assert (response.address, response.values) == (0xAC, [1])
        assert response.to_bytes() == b"\x01\x05\x00\xac\xff\x00"

    def test_write_multiple_registers(self):
        response = ModbusResponse.from_bytes(b"\x01\x10\x00\x01\x00\x02")
        assert (response.address, response.count) == (1, 2)
        assert response.to_bytes() == b"\x01\x10\x00\x01\x00\x02"

    def test_for_read_request(self):
        request = ModbusRequest(7, FunctionCode.READ_INPUT_REGISTERS, 0x08, 2)
        response = ModbusResponse.for_request(request, [10, 20])
        assert response.to_bytes() == b"\x07\x04\x04\x00\x0a\x00\x14"

    def test_for_write_request(self):
        request = ModbusRequest(7, FunctionCode.WRITE_MULTIPLE_COILS, 0x13, 3, [1, 1, 0])
        assert ModbusResponse.for_request(request).to_bytes() == b"\x07\x0f\x00\x13\x00\x03"

    def test_read_response_too_long_for_byte_count(self):
        response = ModbusResponse(1, FunctionCode.READ_HOLDING_REGISTERS, 0, 128, [0] * 128)
        with pytest.raises(ValueError, match="out of range"):
            response.to_bytes()

    def test_write_echo_address_out_of_range(self):
        response = ModbusResponse(1, FunctionCode.WRITE_MULTIPLE_REGISTERS, 0x10000, 1)
        with pytest.raises(ValueError, match="out of range"):
            response.to_bytes()

    @pytest.mark.parametrize(
        "raw,match",
        [
            (b"\x01\x03", "missing byte count"),
            (b"\x01\x03\x04\x00\x01", "declares 4 bytes"),
            (b"\x01\x04\x03\x00\x01\x02", "odd byte count"),
            (b"\x01\x06\x00\x01", "expects 4 data bytes"),
        ],
    )
    def test_malformed(self, raw, match):
        with pytest.raises(ProtocolError, match=match):
            ModbusResponse.from_bytes(raw)


class TestModbusExceptionPDU:
    def test_encode(self):
        pdu = ModbusExceptionPDU(1, FunctionCode.READ_HOLDING_REGISTERS, ExceptionCode.ILLEGAL_DATA_ADDRESS)
        assert pdu.to_bytes() == b"\x01\x83\x02"

    def test_decode(self):
        pdu = ModbusExceptionPDU.from_bytes(b"\x01\x81\x04")
        assert pdu.function_code == FunctionCode.READ_COILS
        assert pdu.exception_code is ExceptionCode.SLAVE_DEVICE_FAILURE

    def test_decode_nonstandard_code(self):
        assert ModbusExceptionPDU.from_bytes(b"\x01\x83\x42").exception_code == 0x42

    @pytest.mark.parametrize(
        "raw,present",
        [
            (b"\x01\x83\x02", True),
            (b"\x01\x90\x01", True),
            (b"\x01\x03\x02\x00\x01", False),
            (b"\x01", False),
            (b"", False),
        ],
    )
    def test_is_present_in(self, raw, present):
        assert ModbusExceptionPDU.is_present_in(raw) is present

    def test_for_request(self):
        request = ModbusRequest(9, FunctionCode.WRITE_SINGLE_COIL, 1, 1, [1])
        pdu = ModbusExceptionPDU.for_request(request, ExceptionCode.ILLEGAL_FUNCTION)
        assert pdu.to_bytes() == b"\x09\x85\x01"

    @pytest.mark.parametrize("raw", [b"\x01\x83", b"\x01\x83\x02\x00", b"\x01\x03\x02"])
    def test_malformed(self, raw):
        with pytest.raises(ProtocolError):
            ModbusExceptionPDU.from_bytes(raw)
