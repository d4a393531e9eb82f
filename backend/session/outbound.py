"""
Single-writer outbound channel for one connection.

Every generator on a connection funnels whole frames through one bounded
queue; one writer task owns the socket. Frames from different generators
may alternate, but never interleave inside a frame.

Non-responsibilities:
- NO flow control towards the peer
- NO acknowledgments or retries
"""

from __future__ import annotations

import asyncio

from observability.logger import log_event, now_ms


class OutboundClosed(Exception):
    """Raised when sending on a stopped or failed outbound channel."""


class OutboundWriter:
    """
    Bounded FIFO of frames drained by one writer task.
    """

    def __init__(
        self,
        writer: asyncio.StreamWriter,
        *,
        max_frames: int,
        session_id: str | None = None,
    ) -> None:
        if max_frames <= 0:
            raise ValueError("max_frames must be > 0")

        self._writer = writer
        self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max_frames)
        self._session_id = session_id
        self._task: asyncio.Task[None] | None = None
        self._closed = False

        self.frames_written = 0
        self.bytes_written = 0
        self.error: BaseException | None = None

    # -------------------------
    # Lifecycle
    # -------------------------

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """
        Stop accepting frames and wait for the writer task to exit.

        Frames still queued are discarded; the connection is going away.
        """
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._discard_pending()

    @property
    def closed(self) -> bool:
        return self._closed

    def depth(self) -> int:
        return self._queue.qsize()

    # -------------------------
    # Producer side
    # -------------------------

    async def send(self, frame: bytes) -> None:
        """
        Enqueue one complete frame; waits while the queue is full.
        """
        if self._closed:
            raise OutboundClosed("outbound channel closed")
        await self._queue.put(frame)

    # -------------------------
    # Writer task
    # -------------------------

    async def _run(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                self._writer.write(frame)
                await self._writer.drain()
            except (ConnectionError, OSError) as e:
                self.error = e
                self._closed = True
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "OUTBOUND_WRITE_ERROR",
                    "session_id": self._session_id,
                    "exception": type(e).__name__,
                    "message": str(e),
                })
                # Closing the transport fails the session's pending read
                self._writer.close()
                return

            self.frames_written += 1
            self.bytes_written += len(frame)

    def _discard_pending(self) -> None:
        # Frees slots so producers blocked in send() can observe cancellation
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
