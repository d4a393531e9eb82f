"""
TM connection session.

Responsibilities:
- Own one accepted TCP connection for its whole life
- Read 64-byte control frames and dispatch on the data-flow selector
- Spawn a FrameGenerator per start selector (several may run at once)
- Funnel every generator's output through one OutboundWriter
- Tear down exactly once: fire the cancellation token, stop generators,
  release the connection

Error policy:
- Malformed control frames and generator failures end THIS session only
  and are reported on the SessionResult; the listener keeps serving.
- Nothing is retried; the protocol has no acknowledgments.

NOT responsible for:
- Stopping an individual generator (the protocol has no stream id)
- Interpreting control frame bytes other than head and selector
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from config import SimulatorConfig
from observability.logger import log_event, now_ms
from protocol.binary import BinaryProtocolError, ControlFrame, decode_control_frame
from session.cancellation import CancellationToken
from session.connection_status import ConnectionStatus
from session.outbound import OutboundWriter
from spec import (
    CONTROL_FRAME_BYTES,
    DATA_FLOW_NOOP,
    DATA_FLOW_START,
    GENERATOR_STOP_TIMEOUT_S,
)
from telemetry.frame_generator import FrameGenerator


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


def _format_peer(peername: Any) -> str:
    if isinstance(peername, tuple) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return str(peername)


# ------------------------------------------------------------------
# Errors / results
# ------------------------------------------------------------------

class MalformedControlFrame(Exception):
    """
    Raised when a peer sends a short control frame or a bad head marker.

    Fatal for the session that received it, never for the process.
    """

    def __init__(self, message: str, raw: bytes) -> None:
        super().__init__(message)
        self.raw = raw


@dataclass(frozen=True)
class SessionResult:
    """
    Outcome of one session, returned by TMSession.run().

    error is None when the peer simply went away.
    """
    session_id: str
    peer: str
    reason: str
    error: BaseException | None
    generators_started: int
    frames_written: int


# ------------------------------------------------------------------
# TMSession
# ------------------------------------------------------------------

class TMSession:
    """
    One session == one TCP connection.
    """

    def __init__(
        self,
        *,
        config: SimulatorConfig,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        session_id: str | None = None,
    ) -> None:
        self._config = config
        self._reader = reader
        self._writer = writer

        self.session_id = session_id or _new_session_id()
        self.peer = _format_peer(writer.get_extra_info("peername"))
        self.created_at = time.time()
        self.status = ConnectionStatus.UP

        self.cancel = CancellationToken()
        self.outbound = OutboundWriter(
            writer,
            max_frames=config.outbound_queue_frames,
            session_id=self.session_id,
        )

        self._generators: list[asyncio.Task[Any]] = []
        self._failure: BaseException | None = None

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> SessionResult:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "SESSION_OPENED",
            "session_id": self.session_id,
            "peer": self.peer,
        })

        self.outbound.start()
        reason = "peer_closed"

        try:
            while self._failure is None:
                data = await self._read_control()
                if not data:
                    break
                self.handle_control_frame(data)

        except MalformedControlFrame as e:
            self._failure = e
            log_event({
                "ts_ms": now_ms(),
                "event_type": "CONTROL_FRAME_MALFORMED",
                "session_id": self.session_id,
                "error": str(e),
                "frame_hex": e.raw.hex(" "),
            })

        except asyncio.TimeoutError:
            reason = "read_timeout"

        except (ConnectionError, OSError) as e:
            reason = "read_error"
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SESSION_READ_ERROR",
                "session_id": self.session_id,
                "exception": type(e).__name__,
                "message": str(e),
            })

        finally:
            await self._teardown()

        if isinstance(self._failure, MalformedControlFrame):
            reason = "malformed_frame"
        elif self._failure is not None:
            reason = "generator_failed"

        result = SessionResult(
            session_id=self.session_id,
            peer=self.peer,
            reason=reason,
            error=self._failure,
            generators_started=len(self._generators),
            frames_written=self.outbound.frames_written,
        )

        log_event({
            "ts_ms": now_ms(),
            "event_type": "SESSION_CLOSED",
            "session_id": self.session_id,
            "peer": self.peer,
            "reason": reason,
            "generators_started": result.generators_started,
            "frames_written": result.frames_written,
        })
        return result

    async def _read_control(self) -> bytes:
        read = self._reader.read(CONTROL_FRAME_BYTES)
        if self._config.read_timeout_s is None:
            return await read
        return await asyncio.wait_for(read, self._config.read_timeout_s)

    # ------------------------------------------------------------------
    # Control frame dispatch
    # ------------------------------------------------------------------

    def handle_control_frame(self, data: bytes) -> asyncio.Task[Any] | None:
        """
        Validate one control frame read and act on its selector.

        Returns:
            the spawned generator task, or None for no-op selectors

        Raises:
            MalformedControlFrame for short reads or a bad head marker.
        """
        if len(data) < CONTROL_FRAME_BYTES:
            raise MalformedControlFrame(
                f"received unsupported frame: {len(data)} bytes", data
            )
        try:
            frame = decode_control_frame(data)
        except BinaryProtocolError as e:
            raise MalformedControlFrame(
                f"received unsupported frame: {e}", data
            ) from e

        selector = frame.data_flow
        if selector in DATA_FLOW_START:
            return self._spawn_generator(frame)

        if selector != DATA_FLOW_NOOP:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "INVALID_DATA_FLOW",
                "session_id": self.session_id,
                "data_flow": f"{selector:#x}",
            })
        return None

    def _spawn_generator(self, frame: ControlFrame) -> asyncio.Task[Any]:
        generator = FrameGenerator(
            config=self._config,
            cancel=self.cancel,
            sink=self.outbound.send,
            generator_id=len(self._generators),
            session_id=self.session_id,
        )
        task = asyncio.create_task(generator.run())
        task.add_done_callback(self._on_generator_done)
        self._generators.append(task)

        log_event({
            "ts_ms": now_ms(),
            "event_type": "DATA_FLOW_START",
            "session_id": self.session_id,
            "data_flow": frame.data_flow,
            "channel": frame.channel,
            "generator_id": generator.generator_id,
            "active_generators": self.active_generators(),
        })
        return task

    def _on_generator_done(self, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return

        log_event({
            "ts_ms": now_ms(),
            "event_type": "GENERATOR_FAILED",
            "session_id": self.session_id,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
        if self._failure is None:
            self._failure = exc
        # Fails the pending control read, which ends the session
        self._writer.close()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """
        Drop the connection from outside (server shutdown).

        The pending control read fails and run() tears down as usual.
        """
        self._writer.close()

    async def _teardown(self) -> None:
        self.status = ConnectionStatus.CLOSING
        self.cancel.cancel()

        await self.outbound.stop()

        if self._generators:
            _, pending = await asyncio.wait(
                self._generators, timeout=GENERATOR_STOP_TIMEOUT_S
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass

        self.status = ConnectionStatus.DOWN

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def active_generators(self) -> int:
        return sum(1 for task in self._generators if not task.done())

    def snapshot(self) -> dict[str, Any]:
        """
        Lightweight snapshot for the status API.
        """
        return {
            "session_id": self.session_id,
            "peer": self.peer,
            "connection_status": self.status.value,
            "created_at": self.created_at,
            "generators_started": len(self._generators),
            "active_generators": self.active_generators(),
            "frames_written": self.outbound.frames_written,
            "outbound_depth": self.outbound.depth(),
        }
