"""
Rate-paced telemetry frame generator.

One generator == one stream on a connection:
- Owns its own CyclicSource (independent read cursor)
- Owns its own sequence counter, starting at 0
- Stops only when the session's cancellation token fires

Pacing:
- gap_us = 1_000_000 // fps between two ticks
- The task sleeps until the next scheduled tick (or until cancelled);
  it never spins on the clock
- A tick that hits end-of-source rewinds and emits nothing; the counter
  does not move, the schedule still advances
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from config import SimulatorConfig
from observability.logger import log_event, now_ms
from observability.metrics import RateMeter, RateSample, emit_rate
from protocol.binary import encode_envelope
from session.cancellation import CancellationToken
from session.outbound import OutboundClosed
from spec import U32_MAX
from telemetry.source import CyclicSource
from telemetry.time_tag import make_time_tag


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

FrameSink = Callable[[bytes], Awaitable[None]]
ClockUs = Callable[[], int]
WallClockNs = Callable[[], int]


def _monotonic_us() -> int:
    return time.monotonic_ns() // 1_000


# ---------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------

class FrameGenerator:
    """
    Emits one frame per pacing tick into `sink` until `cancel` fires.

    Raises SourceOpenError from run() if the source cannot be opened.
    """

    def __init__(
        self,
        *,
        config: SimulatorConfig,
        cancel: CancellationToken,
        sink: FrameSink,
        generator_id: int = 0,
        session_id: str | None = None,
        clock_us: ClockUs = _monotonic_us,
        wall_clock_ns: WallClockNs = time.time_ns,
    ) -> None:
        self._config = config
        self._cancel = cancel
        self._sink = sink
        self._clock_us = clock_us
        self._wall_clock_ns = wall_clock_ns

        self.generator_id = generator_id
        self.session_id = session_id
        self.sequence = 0
        self.skipped_ticks = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> RateSample:
        config = self._config
        source = CyclicSource(
            config.source_path,
            config.frame_length,
            config.frame_offset,
        )
        # File IO stays off the event loop
        await asyncio.to_thread(source.open)

        gap_us = config.gap_us
        t0 = self._clock_us()
        last = t0
        meter = RateMeter(t0)

        log_event({
            "ts_ms": now_ms(),
            "event_type": "GENERATOR_STARTED",
            "session_id": self.session_id,
            "generator_id": self.generator_id,
            "fps": config.fps,
            "frame_length": config.frame_length,
            "enveloped": not config.has_envelope,
        })

        try:
            while not self._cancel.cancelled:
                now = self._clock_us()
                wait_us = last + gap_us - now
                if wait_us > 0:
                    if await self._cancel.wait(wait_us / 1_000_000):
                        break
                    # Timers may fire early; re-check the schedule
                    continue

                frame = await asyncio.to_thread(source.read_frame)
                if frame is None:
                    self.skipped_ticks += 1
                    log_event({
                        "ts_ms": now_ms(),
                        "event_type": "SOURCE_REWOUND",
                        "session_id": self.session_id,
                        "generator_id": self.generator_id,
                        "loop_count": source.loop_count,
                    })
                else:
                    try:
                        await self._sink(self.build_frame(frame))
                    except OutboundClosed:
                        break
                    self.sequence += 1
                    meter.emitted()

                # Stay on the gap grid unless we fell a whole gap behind
                next_tick = last + gap_us
                last = next_tick if now - next_tick < gap_us else now
                meter.tick(now)
        finally:
            source.close()

        sample = meter.sample()
        emit_rate(
            sample,
            session_id=self.session_id,
            details={
                "generator_id": self.generator_id,
                "skipped_ticks": self.skipped_ticks,
                "target_fps": config.fps,
            },
        )
        return sample

    def build_frame(self, payload: bytes) -> bytes:
        """
        Frame to put on the wire for one payload read.

        Pre-framed sources go out verbatim; otherwise the payload is
        wrapped in an envelope carrying the current sequence number.
        """
        if self._config.has_envelope:
            return payload

        return encode_envelope(
            payload,
            frame_length=self._config.frame_length,
            sequence=self.sequence & U32_MAX,
            time_tag=make_time_tag(self._config.time_code, self._wall_clock_ns()),
        )
