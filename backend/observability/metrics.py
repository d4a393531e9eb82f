"""
Frame-rate measurement for generators.

Responsibilities:
- Measure elapsed time between the first and last pacing tick
- Compute the achieved frame rate
- Emit the result as one JSONL event via observability.logger

Design notes:
- Durations come from the generator's clock (microseconds, monotonic in
  production, fake in tests)
- Event timestamps (ts_ms) use wall-clock time for human readability
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from observability.logger import log_event, now_ms


@dataclass(frozen=True)
class RateSample:
    """
    Achieved output rate of one generator run.
    """
    frames: int
    elapsed_us: int

    @property
    def fps(self) -> float | None:
        """
        frames * 1e6 / elapsed_us, or None when no tick elapsed.
        """
        if self.elapsed_us <= 0:
            return None
        return self.frames * 1_000_000 / self.elapsed_us


class RateMeter:
    """
    Counts emitted frames against a start timestamp.

    The caller owns the clock: `start`, `tick` and `emitted` take
    timestamps in microseconds.
    """

    def __init__(self, start_us: int) -> None:
        self._start_us = start_us
        self._last_us = start_us
        self.frames = 0

    def tick(self, now_us: int) -> None:
        self._last_us = now_us

    def emitted(self) -> None:
        self.frames += 1

    def sample(self) -> RateSample:
        return RateSample(frames=self.frames, elapsed_us=self._last_us - self._start_us)


def emit_rate(
    sample: RateSample,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """
    Emit a GENERATOR_STOPPED event carrying the achieved rate.

    The fps field is omitted when no pacing tick elapsed.
    """
    event: dict[str, Any] = {
        "ts_ms": now_ms(),
        "event_type": "GENERATOR_STOPPED",
        "session_id": session_id,
        "frames": sample.frames,
        "elapsed_us": sample.elapsed_us,
        "details": details or {},
    }
    fps = sample.fps
    if fps is not None:
        event["fps"] = round(fps, 2)
    log_event(event)
