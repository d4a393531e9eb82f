"""
TM receiver client.

Connects to a simulator, requests a stream for a channel, then reads STI
envelopes off the socket and hands each one to a callback:

    64-byte head (head marker checked, payload length at unit 10)
    payload
    4-byte tail (checked, mismatch only warned about)

Used as a smoke-test peer for the simulator and as the `tm-receiver` CLI.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, Sequence

from observability.logger import log_event, now_ms
from protocol.binary import (
    InvalidFrameMarker,
    PayloadTooLarge,
    encode_control_frame,
    read_u32_be,
)
from spec import (
    DEFAULT_PORT,
    ENV_HEAD_IDX,
    ENV_PAYLOAD_LEN_IDX,
    ENVELOPE_HEADER_BYTES,
    ENVELOPE_TAIL_BYTES,
    RECEIVER_MAX_PAYLOAD_BYTES,
    STI_HEAD,
    STI_TAIL,
)

FrameCallback = Callable[[bytes], None]


async def read_sti_frame(
    reader: asyncio.StreamReader,
    *,
    max_payload: int = RECEIVER_MAX_PAYLOAD_BYTES,
) -> bytes:
    """
    Read one complete envelope (head + payload + tail).

    Raises:
        asyncio.IncompleteReadError if the stream ends mid-frame
        InvalidFrameMarker on a bad head marker
        PayloadTooLarge if the announced payload exceeds max_payload
    """
    head = await reader.readexactly(ENVELOPE_HEADER_BYTES)
    marker = read_u32_be(head, ENV_HEAD_IDX)
    if marker != STI_HEAD:
        raise InvalidFrameMarker(f"sync word failed: {marker:#X}")

    payload_len = read_u32_be(head, ENV_PAYLOAD_LEN_IDX)
    if payload_len > max_payload:
        raise PayloadTooLarge(f"payload length out of range, {payload_len:#X}")

    payload = await reader.readexactly(payload_len)
    tail = await reader.readexactly(ENVELOPE_TAIL_BYTES)
    if read_u32_be(tail, 0) != STI_TAIL:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "RECEIVER_TAIL_MISMATCH",
            "tail": tail.hex(),
        })
    return head + payload + tail


def strip_envelope(frame: bytes) -> bytes:
    return frame[ENVELOPE_HEADER_BYTES:len(frame) - ENVELOPE_TAIL_BYTES]


async def run_receiver(
    *,
    host: str,
    port: int,
    on_frame: FrameCallback,
    channel: int = 0,
    data_flow: int = 0,
    keep_envelope: bool = False,
    max_frames: int | None = None,
) -> int:
    """
    Request a stream and deliver frames until the server closes.

    Returns:
        number of frames delivered
    """
    reader, writer = await asyncio.open_connection(host, port)
    log_event({
        "ts_ms": now_ms(),
        "event_type": "RECEIVER_CONNECTED",
        "host": host,
        "port": port,
        "channel": channel,
    })

    received = 0
    try:
        writer.write(encode_control_frame(data_flow=data_flow, channel=channel))
        await writer.drain()

        while max_frames is None or received < max_frames:
            try:
                frame = await read_sti_frame(reader)
            except asyncio.IncompleteReadError:
                break
            on_frame(frame if keep_envelope else strip_envelope(frame))
            received += 1
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass
        log_event({
            "ts_ms": now_ms(),
            "event_type": "RECEIVER_DISCONNECTED",
            "frames": received,
        })
    return received


# ------------------------------------------------------------------
# CLI
# ------------------------------------------------------------------

class _FrameSink:
    """Print frames as hex and/or append them to a timestamped .bin file."""

    def __init__(self, *, print_hex: bool, out_dir: Path | None) -> None:
        self._print_hex = print_hex
        self._out_dir = out_dir
        self._file: BinaryIO | None = None

    def __call__(self, frame: bytes) -> None:
        if self._print_hex:
            sys.stdout.write(frame.hex(" ").upper() + "\n")
        if self._out_dir is not None:
            if self._file is None:
                name = datetime.now().strftime("%Y%m%d.%H%M%S.%f")[:-3] + ".bin"
                self._file = open(self._out_dir / name, "wb")
            self._file.write(frame)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="tm-receiver", description="Receive STI telemetry frames.")
    parser.add_argument("--addr", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--channel", type=int, default=0)
    parser.add_argument("--keep-sti", action="store_true", help="deliver whole envelopes")
    parser.add_argument("--no-print", action="store_true", help="do not print frames as hex")
    parser.add_argument("--out-dir", type=Path, default=None, help="append frames to a .bin file here")
    parser.add_argument("--max-frames", type=int, default=None)
    args = parser.parse_args(argv)

    sink = _FrameSink(print_hex=not args.no_print, out_dir=args.out_dir)
    try:
        asyncio.run(run_receiver(
            host=args.addr,
            port=args.port,
            on_frame=sink,
            channel=args.channel,
            keep_envelope=args.keep_sti,
            max_frames=args.max_frames,
        ))
    except (InvalidFrameMarker, PayloadTooLarge) as e:
        log_event({"ts_ms": now_ms(), "event_type": "RECEIVER_PROTOCOL_ERROR", "message": str(e)})
        return 1
    except OSError as e:
        log_event({"ts_ms": now_ms(), "event_type": "RECEIVER_CONNECT_FAILED", "message": str(e)})
        return 1
    except KeyboardInterrupt:
        pass
    finally:
        sink.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
