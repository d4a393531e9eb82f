"""
Cyclic byte source for telemetry payloads.

Each generator opens its own CyclicSource, so read cursors are never
shared. Reaching the end of the file rewinds to the start; the short
read that hit the end is discarded, not padded or stitched.
"""

from __future__ import annotations

import struct
from pathlib import Path
from typing import BinaryIO, Optional

from spec import STI_HEAD


class SourceOpenError(Exception):
    """
    Raised when the payload source cannot be opened for reading.
    """


def detect_preframed(path: str | Path) -> bool:
    """
    Return True if the source already carries STI envelopes.

    Decided once from the first 4 bytes (big-endian head marker).
    """
    with open(path, "rb") as f:
        head = f.read(4)
    if len(head) < 4:
        return False
    return struct.unpack(">I", head)[0] == STI_HEAD


class CyclicSource:
    """
    Sequential fixed-size reader over a file, wrapping at end-of-file.
    """

    def __init__(self, path: str | Path, frame_length: int, frame_offset: int = 0) -> None:
        if frame_length <= 0:
            raise ValueError("frame_length must be > 0")
        if frame_offset < 0:
            raise ValueError("frame_offset must be >= 0")

        self._path = Path(path)
        self._frame_length = frame_length
        self._frame_offset = frame_offset
        self._file: Optional[BinaryIO] = None
        self.loop_count = 0

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        try:
            self._file = open(self._path, "rb")
        except OSError as e:
            raise SourceOpenError(f"cannot open source {self._path}: {e}") from e

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> CyclicSource:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def read_frame(self) -> bytes | None:
        """
        Read the next frame.

        Returns:
            exactly frame_length bytes, or
            None on end-of-source (the source has been rewound)
        """
        if self._file is None:
            raise RuntimeError("source is not open")

        try:
            if self._frame_offset:
                self._file.read(self._frame_offset)
            frame = self._file.read(self._frame_length)
        except OSError:
            frame = b""

        if len(frame) != self._frame_length:
            self._file.seek(0)
            self.loop_count += 1
            return None

        return frame
