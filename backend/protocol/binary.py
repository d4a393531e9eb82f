# backend/protocol/binary.py
"""
Binary framing helpers for the STI telemetry link.

All fields are 32-bit big-endian words addressed by unit index (UNIT = 4).

- Peer → Server (control frame), exactly 64 bytes:
    unit 0   head marker (STI_HEAD)
    unit 1   frame length (64)
    unit 3   TM channel
    unit 5   data-flow selector (byte offset 20)
    unit 15  tail marker (STI_TAIL)

- Server → Peer (envelope), frame_length + 68 bytes:
    unit 0   head marker
    unit 1   total length (frame_length + 68)
    unit 3   time tag field 0 (seconds of year)
    unit 4   time tag field 1 (sub-second)
    unit 5   sequence counter
    unit 10  payload length actually read
    byte 64  payload (frame_length bytes)
    last 4   tail marker

Reserved words are zero.

Usage example:

    frame = decode_control_frame(buf)
    if frame.data_flow in DATA_FLOW_START:
        ...

    payload = encode_envelope(
        data,
        frame_length=config.frame_length,
        sequence=count,
        time_tag=make_time_tag(config.time_code),
    )
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from telemetry.time_tag import TimeTag
from spec import (
    CONTROL_FRAME_BYTES,
    CTRL_CHANNEL_IDX,
    CTRL_DATA_FLOW_IDX,
    CTRL_HEAD_IDX,
    CTRL_LENGTH_IDX,
    CTRL_TAIL_IDX,
    ENV_HEAD_IDX,
    ENV_LENGTH_IDX,
    ENV_PAYLOAD_LEN_IDX,
    ENV_SEQUENCE_IDX,
    ENV_TIME_FIELD0_IDX,
    ENV_TIME_FIELD1_IDX,
    ENVELOPE_HEADER_BYTES,
    ENVELOPE_OVERHEAD_BYTES,
    ENVELOPE_TAIL_BYTES,
    STI_HEAD,
    STI_TAIL,
    U32_MAX,
    UNIT,
)


# -------------------------
# Exceptions
# -------------------------

class BinaryProtocolError(Exception):
    """Base class for binary protocol errors."""


class InvalidFrameLength(BinaryProtocolError):
    """
    Raised when a frame does not match its expected byte length.

    Indicates a truncated, oversized, or self-inconsistent frame.
    The frame is unsafe to process and must be dropped.
    """


class InvalidFrameMarker(BinaryProtocolError):
    """
    Raised when the head or tail marker does not match STI_HEAD / STI_TAIL.
    """


class PayloadTooLarge(BinaryProtocolError):
    """
    Raised when an envelope announces a payload above the reader's limit.
    """


# -------------------------
# Low-level helpers
# -------------------------

def write_u32_be(buf: bytearray, index: int, value: int) -> None:
    """
    Store `value` at word `index` of `buf`.
    """
    offset = index * UNIT
    if offset < 0 or offset + UNIT > len(buf):
        raise InvalidFrameLength(f"word {index} outside {len(buf)}-byte buffer")
    if value < 0 or value > U32_MAX:
        raise ValueError(f"value {value} does not fit in u32")
    struct.pack_into(">I", buf, offset, value)


def read_u32_be(buf: bytes, index: int) -> int:
    """
    Load word `index` of `buf`.
    """
    offset = index * UNIT
    if offset < 0 or offset + UNIT > len(buf):
        raise InvalidFrameLength(f"word {index} outside {len(buf)}-byte buffer")
    return struct.unpack_from(">I", buf, offset)[0]


def envelope_length(frame_length: int) -> int:
    return frame_length + ENVELOPE_OVERHEAD_BYTES


# -------------------------
# Peer → Server (control)
# -------------------------

@dataclass(frozen=True)
class ControlFrame:
    """
    Decoded control frame.

    Only the head and the data-flow selector drive behavior;
    channel is kept for logging.
    """
    data_flow: int
    channel: int
    raw: bytes


def decode_control_frame(payload: bytes) -> ControlFrame:
    """
    Decode a 64-byte control frame.
    """
    if len(payload) != CONTROL_FRAME_BYTES:
        raise InvalidFrameLength(
            f"control frame length {len(payload)} != {CONTROL_FRAME_BYTES}"
        )

    head = read_u32_be(payload, CTRL_HEAD_IDX)
    if head != STI_HEAD:
        raise InvalidFrameMarker(f"control frame head {head:#010x} != {STI_HEAD:#010x}")

    return ControlFrame(
        data_flow=read_u32_be(payload, CTRL_DATA_FLOW_IDX),
        channel=read_u32_be(payload, CTRL_CHANNEL_IDX),
        raw=bytes(payload),
    )


def encode_control_frame(*, data_flow: int, channel: int = 0) -> bytes:
    """
    Encode the 64-byte request a peer sends to start or stop a stream.
    """
    buf = bytearray(CONTROL_FRAME_BYTES)
    write_u32_be(buf, CTRL_HEAD_IDX, STI_HEAD)
    write_u32_be(buf, CTRL_LENGTH_IDX, CONTROL_FRAME_BYTES)
    write_u32_be(buf, CTRL_CHANNEL_IDX, channel)
    write_u32_be(buf, CTRL_DATA_FLOW_IDX, data_flow)
    write_u32_be(buf, CTRL_TAIL_IDX, STI_TAIL)
    return bytes(buf)


# -------------------------
# Server → Peer (envelope)
# -------------------------

@dataclass(frozen=True)
class EnvelopeFrame:
    """
    Decoded telemetry envelope.
    """
    total_length: int
    time_tag: TimeTag
    sequence: int
    payload: bytes

    @property
    def payload_length(self) -> int:
        return len(self.payload)


def encode_envelope(
    payload: bytes,
    *,
    frame_length: int,
    sequence: int,
    time_tag: TimeTag,
) -> bytes:
    """
    Wrap a payload in an STI envelope of exactly frame_length + 68 bytes.

    A payload shorter than frame_length is zero-padded; the payload length
    word records the bytes actually supplied.
    """
    if frame_length <= 0:
        raise InvalidFrameLength(f"frame_length must be > 0, got {frame_length}")
    if len(payload) > frame_length:
        raise InvalidFrameLength(
            f"payload length {len(payload)} > frame_length {frame_length}"
        )

    buf = bytearray(envelope_length(frame_length))
    write_u32_be(buf, ENV_HEAD_IDX, STI_HEAD)
    write_u32_be(buf, ENV_LENGTH_IDX, len(buf))
    write_u32_be(buf, ENV_TIME_FIELD0_IDX, time_tag.seconds_of_year)
    write_u32_be(buf, ENV_TIME_FIELD1_IDX, time_tag.sub_second)
    write_u32_be(buf, ENV_SEQUENCE_IDX, sequence)
    write_u32_be(buf, ENV_PAYLOAD_LEN_IDX, len(payload))
    buf[ENVELOPE_HEADER_BYTES:ENVELOPE_HEADER_BYTES + len(payload)] = payload
    struct.pack_into(">I", buf, len(buf) - ENVELOPE_TAIL_BYTES, STI_TAIL)

    return bytes(buf)


def decode_envelope(buf: bytes) -> EnvelopeFrame:
    """
    Decode a complete STI envelope.
    """
    if len(buf) < ENVELOPE_OVERHEAD_BYTES:
        raise InvalidFrameLength(
            f"envelope length {len(buf)} < {ENVELOPE_OVERHEAD_BYTES}"
        )

    head = read_u32_be(buf, ENV_HEAD_IDX)
    if head != STI_HEAD:
        raise InvalidFrameMarker(f"envelope head {head:#010x} != {STI_HEAD:#010x}")

    total_length = read_u32_be(buf, ENV_LENGTH_IDX)
    if total_length != len(buf):
        raise InvalidFrameLength(
            f"envelope length word {total_length} != buffer length {len(buf)}"
        )

    payload_area = len(buf) - ENVELOPE_OVERHEAD_BYTES
    payload_length = read_u32_be(buf, ENV_PAYLOAD_LEN_IDX)
    if payload_length > payload_area:
        raise InvalidFrameLength(
            f"payload length {payload_length} > payload area {payload_area}"
        )

    tail = struct.unpack_from(">I", buf, len(buf) - ENVELOPE_TAIL_BYTES)[0]
    if tail != STI_TAIL:
        raise InvalidFrameMarker(f"envelope tail {tail:#010x} != {STI_TAIL:#010x}")

    return EnvelopeFrame(
        total_length=total_length,
        time_tag=TimeTag(
            seconds_of_year=read_u32_be(buf, ENV_TIME_FIELD0_IDX),
            sub_second=read_u32_be(buf, ENV_TIME_FIELD1_IDX),
        ),
        sequence=read_u32_be(buf, ENV_SEQUENCE_IDX),
        payload=bytes(buf[ENVELOPE_HEADER_BYTES:ENVELOPE_HEADER_BYTES + payload_length]),
    )
