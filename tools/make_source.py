import struct
import sys
from pathlib import Path

STI_HEAD = 1234567890
STI_TAIL = (-STI_HEAD) & 0xFFFFFFFF


def incrementing(frame_count: int, frame_len: int) -> bytes:
    """Frame i is frame_len bytes of (i % 256)."""
    return b"".join(bytes([i % 256]) * frame_len for i in range(frame_count))


def preframed(frame_count: int, frame_len: int) -> bytes:
    """Same payloads, each already wrapped in a minimal STI envelope."""
    out = bytearray()
    for i in range(frame_count):
        head = bytearray(64)
        struct.pack_into(">I", head, 0, STI_HEAD)
        struct.pack_into(">I", head, 4, frame_len + 68)
        struct.pack_into(">I", head, 20, i)
        struct.pack_into(">I", head, 40, frame_len)
        out += head + bytes([i % 256]) * frame_len + struct.pack(">I", STI_TAIL)
    return bytes(out)


if __name__ == "__main__":
    if len(sys.argv) not in (4, 5):
        print("Usage: python make_source.py out.dat frame_count frame_len [--sti]")
        sys.exit(1)

    frames, length = int(sys.argv[2]), int(sys.argv[3])
    data = preframed(frames, length) if sys.argv[4:] == ["--sti"] else incrementing(frames, length)
    Path(sys.argv[1]).write_bytes(data)
    print(f"wrote {len(data)} bytes to {sys.argv[1]}")
