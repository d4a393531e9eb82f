"""
TCP listener for TM sessions.

Responsibilities:
- Bind the configured port (bind failure propagates: fatal at startup)
- Run one independent TMSession per accepted connection
- Keep a registry of live sessions for the status API
- Keep only the most recent closed-session results (bounded)

Sessions share nothing mutable; the config is the only common input.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any

from config import SimulatorConfig
from observability.logger import log_event, now_ms
from session.tm_session import SessionResult, TMSession
from spec import RECENT_RESULTS_MAX


class TMServer:
    """
    asyncio TCP server spawning a TMSession per connection.
    """

    def __init__(self, config: SimulatorConfig) -> None:
        self._config = config
        self._server: asyncio.Server | None = None
        self.sessions: dict[str, TMSession] = {}
        self.results: deque[SessionResult] = deque(maxlen=RECENT_RESULTS_MAX)
        self.closed_count = 0

    @property
    def config(self) -> SimulatorConfig:
        return self._config

    @property
    def bound_port(self) -> int | None:
        """Actual listening port (differs from config when port 0 is used)."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle_connection,
            self._config.host,
            self._config.port,
        )
        log_event({
            "ts_ms": now_ms(),
            "event_type": "SERVER_LISTENING",
            "host": self._config.host,
            "port": self.bound_port,
            "channel": self._config.tm_channel,
            "time_code": self._config.time_code,
            "fps": self._config.fps,
            "frame_length": self._config.frame_length,
            "source": str(self._config.source_path),
            "preframed_source": self._config.has_envelope,
        })

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        if self._server is None:
            raise RuntimeError("listener failed to start")
        async with self._server:
            await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is None:
            return
        open_sessions = len(self.sessions)
        self._server.close()
        # wait_closed() also waits for live connections on newer Pythons
        for session in list(self.sessions.values()):
            session.close()
        await self._server.wait_closed()
        log_event({
            "ts_ms": now_ms(),
            "event_type": "SERVER_CLOSED",
            "open_sessions": open_sessions,
        })

    # ------------------------------------------------------------------
    # Per-connection handler
    # ------------------------------------------------------------------

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        session: TMSession | None = None
        try:
            session = TMSession(config=self._config, reader=reader, writer=writer)
            self.sessions[session.session_id] = session
            result = await session.run()
            self.results.append(result)
            self.closed_count += 1

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "ACCEPT_ERROR",
                "session_id": session.session_id if session else None,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            writer.close()

        finally:
            if session is not None:
                self.sessions.pop(session.session_id, None)

    def snapshot(self) -> dict[str, Any]:
        return {
            "port": self.bound_port,
            "channel": self._config.tm_channel,
            "sessions": [s.snapshot() for s in self.sessions.values()],
            "closed_sessions": self.closed_count,
            "recent_closed": [
                {
                    "session_id": r.session_id,
                    "peer": r.peer,
                    "reason": r.reason,
                    "frames_written": r.frames_written,
                }
                for r in self.results
            ],
        }
