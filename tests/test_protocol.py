"""
Tests for the bus protocol module.

This test module validates:
- Request/response message models and JSON serialization
- Request decoding errors
- Length-prefixed framing
"""

from __future__ import annotations

import asyncio
import json

import pytest

from miniui.ipc.protocol import (
    MAX_MESSAGE_SIZE,
    BusCallError,
    BusProtocolError,
    BusRequest,
    BusResponse,
    encode_frame,
    read_frame,
)


def _reader_with(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


# =============================================================================
# BusRequest Tests
# =============================================================================


class TestBusRequest:
    """Tests for BusRequest."""

    def test_create_defaults(self) -> None:
        """Test request creation fills id, object and params."""
        request = BusRequest.create("status")

        assert request.method == "status"
        assert request.object == "miniui"
        assert request.params == {}
        assert request.id

    def test_json_roundtrip(self) -> None:
        """Test the fields survive serialization."""
        request = BusRequest.create(
            "apply_lan", params={"ipaddr": "10.0.0.1"}, request_id="req-1"
        )
        decoded = BusRequest.from_json(request.to_json())

        assert decoded.id == "req-1"
        assert decoded.object == "miniui"
        assert decoded.method == "apply_lan"
        assert decoded.params == {"ipaddr": "10.0.0.1"}

    def test_missing_object_defaults(self) -> None:
        """Test a request without object addresses miniui."""
        request = BusRequest.from_dict({"id": "1", "method": "status"})
        assert request.object == "miniui"

    def test_null_params_become_empty(self) -> None:
        """Test null params are treated as no fields."""
        request = BusRequest.from_dict({"id": "1", "method": "status", "params": None})
        assert request.params == {}

    @pytest.mark.parametrize(
        "data",
        [
            {"method": "status"},
            {"id": "1"},
            {"id": 1, "method": "status"},
            {"id": "1", "method": "status", "params": ["x"]},
        ],
    )
    def test_malformed_request(self, data: dict) -> None:
        """Test malformed requests raise BusProtocolError."""
        with pytest.raises(BusProtocolError):
            BusRequest.from_dict(data)

    def test_non_object_request(self) -> None:
        """Test a JSON array is rejected."""
        with pytest.raises(BusProtocolError):
            BusRequest.from_json("[1, 2]")


# =============================================================================
# BusResponse Tests
# =============================================================================


class TestBusResponse:
    """Tests for BusResponse."""

    def test_success(self) -> None:
        """Test success response."""
        response = BusResponse.success("req-1", {"status": "ok"})

        assert response.is_success
        assert not response.is_error
        assert json.loads(response.to_json()) == {
            "id": "req-1",
            "status": "ok",
            "data": {"status": "ok"},
            "error": None,
        }

    def test_error_roundtrip(self) -> None:
        """Test error response roundtrip."""
        response = BusResponse.create_error(
            "req-2", "invalid_argument", "ipaddr is required", {"field": "ipaddr"}
        )
        decoded = BusResponse.from_json(response.to_json())

        assert decoded.is_error
        assert decoded.error is not None
        assert decoded.error.code == "invalid_argument"
        assert decoded.error.details == {"field": "ipaddr"}


class TestBusCallError:
    """Tests for BusCallError."""

    def test_carries_code(self) -> None:
        """Test the reply code is kept."""
        error = BusCallError("execution_failed", "failed", {"returncode": 3})
        assert error.code == "execution_failed"
        assert error.details == {"returncode": 3}


# =============================================================================
# Framing Tests
# =============================================================================


class TestFraming:
    """Tests for length-prefixed framing."""

    async def test_encode_then_read(self) -> None:
        """Test a frame is read back intact."""
        frame = encode_frame('{"id": "1"}')
        assert frame[:4] == (11).to_bytes(4, "big")

        assert await read_frame(_reader_with(frame)) == '{"id": "1"}'

    async def test_eof_returns_none(self) -> None:
        """Test a closed connection yields None."""
        assert await read_frame(_reader_with(b"")) is None

    async def test_truncated_frame_returns_none(self) -> None:
        """Test a frame cut short yields None."""
        assert await read_frame(_reader_with((10).to_bytes(4, "big") + b"abc")) is None

    async def test_empty_frame_rejected(self) -> None:
        """Test zero-length frames are protocol errors."""
        with pytest.raises(BusProtocolError):
            await read_frame(_reader_with((0).to_bytes(4, "big")))

    async def test_oversized_frame_rejected(self) -> None:
        """Test frames above the limit are rejected before reading."""
        with pytest.raises(BusProtocolError):
            await read_frame(_reader_with((MAX_MESSAGE_SIZE + 1).to_bytes(4, "big")))

    def test_oversized_message_not_encoded(self) -> None:
        """Test oversized messages cannot be encoded."""
        with pytest.raises(BusProtocolError):
            encode_frame("x" * (MAX_MESSAGE_SIZE + 1))
